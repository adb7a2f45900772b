"""Campaign lookups and the tiered spend discount."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Iterable
from uuid import UUID

from loguru import logger
from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from promo_api.models.marketing import Campaign, CampaignStatus, CampaignType
from promo_api.schemas.marketing import DiscountTier, parse_tiered_rules

from .discounts import ZERO, to_money
from .errors import CampaignNotFoundError, CampaignRuleInvalidError
from .pagination import page_bounds
from .timeutils import ensure_aware, utcnow


class CampaignState(str, Enum):
    DISABLED = "disabled"
    NOT_STARTED = "not_started"
    ACTIVE = "active"
    ENDED = "ended"


CAMPAIGN_TYPE_LABELS: dict[CampaignType, str] = {
    CampaignType.TIERED_DISCOUNT: "Spend & save",
    CampaignType.GIFT: "Free gift",
    CampaignType.FLASH_SALE: "Flash sale",
    CampaignType.GROUP_BUY: "Group buy",
}


@dataclass
class CampaignView:
    campaign: Campaign
    state: CampaignState
    type_label: str
    tiers: list[DiscountTier] = field(default_factory=list)
    rules_valid: bool = True

    @property
    def is_active(self) -> bool:
        return self.state == CampaignState.ACTIVE


def effective_state(campaign: Campaign, now: datetime) -> CampaignState:
    if campaign.status != CampaignStatus.ACTIVE:
        return CampaignState.DISABLED
    if now < ensure_aware(campaign.start_time):
        return CampaignState.NOT_STARTED
    if now > ensure_aware(campaign.end_time):
        return CampaignState.ENDED
    return CampaignState.ACTIVE


def best_tier_discount(tiers: Iterable[DiscountTier], order_amount: Decimal) -> Decimal:
    """Largest discount among every tier whose threshold ``order_amount`` meets.

    Tiers arrive in no particular order, so all of them are scanned.
    """

    amount = to_money(order_amount)
    best = ZERO
    for tier in tiers:
        if to_money(tier.min_amount) <= amount and to_money(tier.discount_amount) > best:
            best = to_money(tier.discount_amount)
    return best


def _tiers_for(campaign: Campaign) -> list[DiscountTier]:
    if campaign.campaign_type != CampaignType.TIERED_DISCOUNT:
        return []
    try:
        return parse_tiered_rules(campaign.rules).tiers
    except ValidationError as exc:
        logger.warning("Campaign rules failed validation", campaign_id=str(campaign.id), errors=exc.error_count())
        raise CampaignRuleInvalidError() from exc


class CampaignService:
    """Read-side access to promotional campaigns."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    def _active_filters(self, now: datetime) -> tuple:
        return (
            Campaign.status == CampaignStatus.ACTIVE,
            Campaign.start_time <= now,
            Campaign.end_time >= now,
        )

    def build_view(self, campaign: Campaign, now: datetime | None = None) -> CampaignView:
        """Render ``campaign`` for listings; malformed rules yield no tiers instead of failing."""

        try:
            tiers, rules_valid = _tiers_for(campaign), True
        except CampaignRuleInvalidError:
            tiers, rules_valid = [], False
        return CampaignView(
            campaign=campaign,
            state=effective_state(campaign, now or utcnow()),
            type_label=CAMPAIGN_TYPE_LABELS.get(campaign.campaign_type, str(campaign.campaign_type)),
            tiers=tiers,
            rules_valid=rules_valid,
        )

    async def list_active_campaigns(
        self,
        *,
        page: int = 1,
        page_size: int | None = None,
    ) -> tuple[list[CampaignView], int]:
        now = utcnow()
        offset, limit = page_bounds(page, page_size)
        filters = self._active_filters(now)
        total = await self._db.scalar(select(func.count(Campaign.id)).where(*filters))
        stmt = (
            select(Campaign)
            .where(*filters)
            .order_by(Campaign.created_at.desc(), Campaign.id.desc())
            .offset(offset)
            .limit(limit)
        )
        campaigns = (await self._db.execute(stmt)).scalars().all()
        return [self.build_view(campaign, now) for campaign in campaigns], int(total or 0)

    async def get_campaign_detail(self, campaign_id: UUID) -> CampaignView:
        campaign = await self._db.get(Campaign, campaign_id)
        if campaign is None:
            raise CampaignNotFoundError()
        return self.build_view(campaign)

    async def get_campaigns_by_type(self, campaign_type: CampaignType) -> list[CampaignView]:
        """Active campaigns of one type, most recently created first."""

        now = utcnow()
        stmt = (
            select(Campaign)
            .where(Campaign.campaign_type == CampaignType(campaign_type), *self._active_filters(now))
            .order_by(Campaign.created_at.desc(), Campaign.id.desc())
        )
        campaigns = (await self._db.execute(stmt)).scalars().all()
        return [self.build_view(campaign, now) for campaign in campaigns]

    async def calculate_discount_campaign(self, order_amount: Decimal) -> tuple[Decimal, Campaign | None]:
        """Discount the active tiered campaign grants on ``order_amount``.

        Only one tiered campaign is expected to be live at a time; if several
        overlap, the most recently created one is evaluated.
        """

        now = utcnow()
        stmt = (
            select(Campaign)
            .where(Campaign.campaign_type == CampaignType.TIERED_DISCOUNT, *self._active_filters(now))
            .order_by(Campaign.created_at.desc(), Campaign.id.desc())
            .limit(1)
        )
        campaign = (await self._db.execute(stmt)).scalar_one_or_none()
        if campaign is None:
            return ZERO, None

        discount = best_tier_discount(_tiers_for(campaign), order_amount)
        if discount <= ZERO:
            return ZERO, None
        logger.debug(
            "Applied tiered campaign",
            campaign_id=str(campaign.id),
            order_amount=str(order_amount),
            discount=str(discount),
        )
        return discount, campaign


__all__ = [
    "CAMPAIGN_TYPE_LABELS",
    "CampaignService",
    "CampaignState",
    "CampaignView",
    "best_tier_discount",
    "effective_state",
]
