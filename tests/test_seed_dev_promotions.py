from decimal import Decimal

import pytest
from sqlalchemy import func, select

from promo_api.models import Campaign, Coupon, User
from promo_api.services.marketing import CampaignService, calculate_discount
from tooling.seed_dev_promotions import DEV_COUPONS, DEV_USERS, seed_promotions


@pytest.mark.asyncio
async def test_seed_promotions_is_idempotent(session_factory):
    async with session_factory() as session:
        await seed_promotions(session)
        await seed_promotions(session)

        assert await session.scalar(select(func.count(User.id))) == len(DEV_USERS)
        assert await session.scalar(select(func.count(Coupon.id))) == len(DEV_COUPONS)
        assert await session.scalar(select(func.count(Campaign.id))) == 1


@pytest.mark.asyncio
async def test_seeded_campaign_grants_tiered_discount(session_factory):
    async with session_factory() as session:
        await seed_promotions(session)

        discount, campaign = await CampaignService(session).calculate_discount_campaign(Decimal("250"))

    assert campaign is not None
    assert discount == Decimal("30.00")


@pytest.mark.asyncio
async def test_seeded_percent_coupon_takes_a_fraction_of_the_order(session_factory) -> None:
    async with session_factory() as session:
        await seed_promotions(session)
        coupon = await session.scalar(select(Coupon).where(Coupon.name == "Mall 15% off"))

    assert calculate_discount(coupon, Decimal("100")) == Decimal("15.00")
    assert calculate_discount(coupon, Decimal("400")) == Decimal("30.00")
