from decimal import Decimal
from uuid import uuid4

import pytest
from pydantic import ValidationError

from conftest import build_campaign, utc
from promo_api.models.marketing import CampaignStatus, CampaignType
from promo_api.schemas.marketing import DiscountTier, parse_tiered_rules
from promo_api.services.marketing import CampaignService, CampaignState, best_tier_discount, effective_state
from promo_api.services.marketing.errors import CampaignNotFoundError, CampaignRuleInvalidError


def _tiers(*pairs):
    return [DiscountTier(min_amount=Decimal(str(low)), discount_amount=Decimal(str(off))) for low, off in pairs]


def test_best_tier_scans_every_tier() -> None:
    tiers = _tiers((100, 10), (200, 30))
    assert best_tier_discount(tiers, Decimal("250")) == Decimal("30.00")
    assert best_tier_discount(tiers, Decimal("150")) == Decimal("10.00")
    assert best_tier_discount(tiers, Decimal("50")) == Decimal("0.00")


def test_best_tier_ignores_tier_order() -> None:
    tiers = _tiers((200, 30), (300, 25), (100, 10))
    assert best_tier_discount(tiers, Decimal("350")) == Decimal("30.00")
    assert best_tier_discount(tiers, Decimal("200")) == Decimal("30.00")


def test_parse_tiered_rules_accepts_aliases_and_bare_lists() -> None:
    from_dict = parse_tiered_rules({"tiers": [{"min_amount": "100", "discount": "12.5"}]})
    from_list = parse_tiered_rules([{"minAmount": 100, "discountAmount": 12.5}])
    assert from_dict.tiers == from_list.tiers
    assert parse_tiered_rules(None).tiers == []


def test_parse_tiered_rules_accepts_legacy_rules_key() -> None:
    legacy = parse_tiered_rules({"rules": [{"min_amount": 100, "discount": 10}, {"min_amount": 200, "discount": 30}]})
    assert [tier.discount_amount for tier in legacy.tiers] == [Decimal("10"), Decimal("30")]


def test_parse_tiered_rules_rejects_unknown_keys() -> None:
    with pytest.raises(ValidationError):
        parse_tiered_rules({"tier": [{"minAmount": 100, "discountAmount": 10}]})


@pytest.mark.asyncio
async def test_calculate_discount_campaign(session_factory) -> None:
    async with session_factory() as session:
        campaign = build_campaign()
        session.add(campaign)
        await session.commit()
        campaign_id = campaign.id

    async with session_factory() as session:
        service = CampaignService(session)
        discount, applied = await service.calculate_discount_campaign(Decimal("250"))
        assert discount == Decimal("30.00")
        assert applied.id == campaign_id

        discount, applied = await service.calculate_discount_campaign(Decimal("150"))
        assert discount == Decimal("10.00")
        assert applied.id == campaign_id

        discount, applied = await service.calculate_discount_campaign(Decimal("50"))
        assert discount == Decimal("0.00")
        assert applied is None


@pytest.mark.asyncio
async def test_no_active_campaign_is_not_an_error(session_factory) -> None:
    async with session_factory() as session:
        session.add_all(
            [
                build_campaign(status=CampaignStatus.DISABLED),
                build_campaign(start_time=utc(days=-9), end_time=utc(days=-2)),
                build_campaign(campaign_type=CampaignType.GIFT, rules={}),
            ]
        )
        await session.commit()

    async with session_factory() as session:
        discount, applied = await CampaignService(session).calculate_discount_campaign(Decimal("500"))

    assert discount == Decimal("0.00")
    assert applied is None


@pytest.mark.asyncio
async def test_newest_overlapping_tiered_campaign_wins(session_factory) -> None:
    async with session_factory() as session:
        older = build_campaign(name="Older", created_at=utc(days=-3))
        newer = build_campaign(
            name="Newer",
            rules={"tiers": [{"minAmount": 100, "discountAmount": 15}]},
            created_at=utc(days=-1),
        )
        session.add_all([older, newer])
        await session.commit()
        newer_id = newer.id

    async with session_factory() as session:
        discount, applied = await CampaignService(session).calculate_discount_campaign(Decimal("250"))

    assert applied.id == newer_id
    assert discount == Decimal("15.00")


@pytest.mark.asyncio
async def test_malformed_rules_raise_rule_invalid(session_factory) -> None:
    async with session_factory() as session:
        session.add(build_campaign(rules={"tiers": [{"minAmount": "lots"}]}))
        await session.commit()

    async with session_factory() as session:
        with pytest.raises(CampaignRuleInvalidError):
            await CampaignService(session).calculate_discount_campaign(Decimal("100"))


@pytest.mark.asyncio
async def test_campaign_lookups(session_factory) -> None:
    async with session_factory() as session:
        flash_old = build_campaign(name="Flash 1", campaign_type=CampaignType.FLASH_SALE, rules={}, created_at=utc(days=-2))
        flash_new = build_campaign(name="Flash 2", campaign_type=CampaignType.FLASH_SALE, rules={}, created_at=utc(days=-1))
        flash_ended = build_campaign(
            name="Flash 0",
            campaign_type=CampaignType.FLASH_SALE,
            rules={},
            start_time=utc(days=-9),
            end_time=utc(days=-1),
        )
        upcoming = build_campaign(name="Soon", start_time=utc(days=2), end_time=utc(days=4))
        session.add_all([flash_old, flash_new, flash_ended, upcoming])
        await session.commit()
        upcoming_id = upcoming.id

    async with session_factory() as session:
        service = CampaignService(session)

        flash = await service.get_campaigns_by_type(CampaignType.FLASH_SALE)
        assert [view.campaign.name for view in flash] == ["Flash 2", "Flash 1"]
        assert all(view.is_active for view in flash)
        assert flash[0].type_label == "Flash sale"

        detail = await service.get_campaign_detail(upcoming_id)
        assert detail.state == CampaignState.NOT_STARTED
        assert [tier.discount_amount for tier in detail.tiers] == [Decimal("10"), Decimal("30")]

        views, total = await service.list_active_campaigns()
        assert total == 2

        with pytest.raises(CampaignNotFoundError):
            await service.get_campaign_detail(uuid4())


def test_effective_state_precedence() -> None:
    now = utc()
    disabled = build_campaign(status=CampaignStatus.DISABLED, start_time=utc(days=-9), end_time=utc(days=-1))
    ended = build_campaign(start_time=utc(days=-9), end_time=utc(days=-1))
    live = build_campaign()
    assert effective_state(disabled, now) == CampaignState.DISABLED
    assert effective_state(ended, now) == CampaignState.ENDED
    assert effective_state(live, now) == CampaignState.ACTIVE


@pytest.mark.asyncio
async def test_legacy_rules_document_grants_discount(session_factory) -> None:
    async with session_factory() as session:
        campaign = build_campaign(
            rules={"rules": [{"min_amount": 100, "discount": 10}, {"min_amount": 200, "discount": 30}]}
        )
        session.add(campaign)
        await session.commit()
        campaign_id = campaign.id

    async with session_factory() as session:
        discount, applied = await CampaignService(session).calculate_discount_campaign(Decimal("250"))

    assert discount == Decimal("30.00")
    assert applied.id == campaign_id


@pytest.mark.asyncio
async def test_misspelled_rules_key_raises_rule_invalid(session_factory) -> None:
    async with session_factory() as session:
        session.add(build_campaign(rules={"tier": [{"minAmount": 100, "discountAmount": 10}]}))
        await session.commit()

    async with session_factory() as session:
        with pytest.raises(CampaignRuleInvalidError):
            await CampaignService(session).calculate_discount_campaign(Decimal("250"))


@pytest.mark.asyncio
async def test_listings_survive_campaign_with_malformed_rules(session_factory) -> None:
    async with session_factory() as session:
        gift = build_campaign(name="Gift", campaign_type=CampaignType.GIFT, rules={}, created_at=utc(days=-2))
        broken = build_campaign(name="Broken", rules={"tiers": [{"minAmount": "lots"}]}, created_at=utc(days=-1))
        session.add_all([gift, broken])
        await session.commit()
        broken_id = broken.id

    async with session_factory() as session:
        service = CampaignService(session)

        views, total = await service.list_active_campaigns()
        assert total == 2
        assert [view.campaign.name for view in views] == ["Broken", "Gift"]
        assert [view.rules_valid for view in views] == [False, True]
        assert views[0].tiers == []

        by_type = await service.get_campaigns_by_type(CampaignType.TIERED_DISCOUNT)
        assert [view.campaign.id for view in by_type] == [broken_id]
        assert by_type[0].rules_valid is False

        detail = await service.get_campaign_detail(broken_id)
        assert detail.rules_valid is False
        assert detail.tiers == []
