"""Jobs that keep claimed coupon state in step with the clock."""

from __future__ import annotations

import datetime as dt
from typing import Any, Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from promo_api.services.marketing import UserCouponService

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]


async def run_coupon_expiration(*, session_factory: SessionFactory) -> Dict[str, Any]:
    """Mark unused claims past their expiry as expired."""

    maybe_session = session_factory()
    session: AsyncSession
    if isinstance(maybe_session, AsyncSession):
        session = maybe_session
    else:
        session = await maybe_session

    async with session as managed_session:
        service = UserCouponService(managed_session)
        now = dt.datetime.now(dt.timezone.utc)
        expired = await service.expire_user_coupons(reference_time=now)

        summary = {
            "expired": expired,
            "reference_time": now.isoformat(),
        }
        logger.bind(summary=summary).info("Coupon expiration sweep completed")
        return summary


__all__ = ["SessionFactory", "run_coupon_expiration"]
