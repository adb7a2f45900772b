"""Seed development members, coupons and a tiered campaign into the API database."""

from __future__ import annotations

import asyncio
import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, TypedDict

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from promo_api.core.settings import settings
from promo_api.models.marketing import (
    Campaign,
    CampaignType,
    Coupon,
    CouponDiscountType,
    CouponScope,
)
from promo_api.models.user import User


class SeedUser(TypedDict):
    email: str
    display_name: str


DEV_USERS: list[SeedUser] = [
    {"email": os.getenv("DEV_MEMBER_EMAIL", "member@promo.dev").lower(), "display_name": "Member QA"},
    {"email": os.getenv("DEV_TESTING_EMAIL", "testing@promo.dev").lower(), "display_name": "Testing QA"},
]

DEV_COUPONS: list[dict[str, Any]] = [
    {
        "name": "New member 10 off",
        "description": "10 off orders of 50 or more",
        "discount_type": CouponDiscountType.FIXED,
        "value": Decimal("10.00"),
        "min_amount": Decimal("50.00"),
        "applicable_scope": CouponScope.ALL,
        "total_count": 1000,
        "per_user_limit": 1,
        "valid_days": 7,
    },
    {
        "name": "Mall 15% off",
        "description": "15% off mall orders, capped at 30",
        "discount_type": CouponDiscountType.PERCENT,
        "value": Decimal("0.15"),
        "min_amount": Decimal("0"),
        "max_discount": Decimal("30.00"),
        "applicable_scope": CouponScope.MALL,
        "total_count": 200,
        "per_user_limit": 2,
    },
    {
        "name": "Rental weekend 20 off",
        "discount_type": CouponDiscountType.FIXED,
        "value": Decimal("20.00"),
        "min_amount": Decimal("120.00"),
        "applicable_scope": CouponScope.RENTAL,
        "total_count": 50,
        "per_user_limit": 1,
    },
]

DEV_CAMPAIGN = {
    "name": "Spend more, save more",
    "campaign_type": CampaignType.TIERED_DISCOUNT,
    "description": "Automatic discount once the basket passes a threshold",
    "rules": {
        "tiers": [
            {"minAmount": "100", "discountAmount": "10"},
            {"minAmount": "200", "discountAmount": "30"},
            {"minAmount": "500", "discountAmount": "90"},
        ]
    },
}


async def seed_promotions(session: AsyncSession, *, window_days: int = 30) -> None:
    """Upsert the development fixtures by name/email so reruns stay idempotent."""

    now = datetime.now(timezone.utc)
    start_time = now - timedelta(hours=1)
    end_time = now + timedelta(days=window_days)

    for user in DEV_USERS:
        existing = await session.execute(select(User).where(User.email == user["email"]))
        record = existing.scalar_one_or_none()
        if record:
            record.display_name = user["display_name"]
        else:
            session.add(User(email=user["email"], display_name=user["display_name"]))

    for payload in DEV_COUPONS:
        existing = await session.execute(select(Coupon).where(Coupon.name == payload["name"]))
        coupon = existing.scalar_one_or_none()
        if coupon is None:
            coupon = Coupon(**payload)
            session.add(coupon)
        else:
            for key, value in payload.items():
                setattr(coupon, key, value)
        coupon.start_time = start_time
        coupon.end_time = end_time

    existing = await session.execute(select(Campaign).where(Campaign.name == DEV_CAMPAIGN["name"]))
    campaign = existing.scalar_one_or_none()
    if campaign is None:
        campaign = Campaign(**DEV_CAMPAIGN)
        session.add(campaign)
    campaign.rules = DEV_CAMPAIGN["rules"]
    campaign.start_time = start_time
    campaign.end_time = end_time

    await session.commit()


async def main() -> None:
    engine = create_async_engine(settings.database_url, future=True)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        async with session_factory() as session:
            await seed_promotions(session)
        logger.info(
            "Development promotions ready",
            users=len(DEV_USERS),
            coupons=len(DEV_COUPONS),
            campaigns=1,
        )
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
