"""Coupon catalog browsing and the claim path."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from promo_api.models.marketing import Coupon, CouponScope, CouponStatus, UserCoupon
from promo_api.observability.marketing import MarketingObservabilityStore, get_marketing_store
from promo_api.observability.tracing import get_tracer

from .discounts import ZERO, calculate_discount
from .errors import (
    CouponExpiredError,
    CouponLimitExceededError,
    CouponNotActiveError,
    CouponNotFoundError,
    CouponNotStartedError,
    CouponSoldOutError,
    PromotionError,
)
from .pagination import page_bounds
from .timeutils import ensure_aware, utcnow
from .user_coupon_service import UserCouponService


@dataclass
class CouponAvailability:
    """Coupon annotated with the requesting user's claim position."""

    coupon: Coupon
    received_by_user: int
    remaining: int
    can_claim: bool
    reason: str | None = None


def compute_expiry(coupon: Coupon, claimed_at: datetime) -> datetime:
    """Expiry of a claim made at ``claimed_at``.

    Relative validity never extends past the coupon's own window end.
    """

    end_time = ensure_aware(coupon.end_time)
    if coupon.valid_days and coupon.valid_days > 0:
        return min(claimed_at + timedelta(days=int(coupon.valid_days)), end_time)
    return end_time


def check_claimable(coupon: Coupon, now: datetime, received_by_user: int) -> PromotionError | None:
    """Return the first rule a claim would violate, or ``None``.

    Inventory is not checked here; exhaustion is only decided by the guarded
    increment at claim time.
    """

    if coupon.status != CouponStatus.ACTIVE:
        return CouponNotActiveError()
    if now < ensure_aware(coupon.start_time):
        return CouponNotStartedError()
    if now > ensure_aware(coupon.end_time):
        return CouponExpiredError()
    if received_by_user >= int(coupon.per_user_limit or 0):
        return CouponLimitExceededError()
    return None


class CouponService:
    """Expose coupon templates and hand out claims."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        observability: MarketingObservabilityStore | None = None,
    ) -> None:
        self._db = db_session
        self._observability = observability or get_marketing_store()

    async def claim(self, coupon_id: UUID, user_id: UUID) -> UserCoupon:
        """Claim one unit of ``coupon_id`` for ``user_id``.

        Validation order is status, window start, window end, per-user limit and
        finally inventory. The inventory check and the increment happen in one
        conditional UPDATE so concurrent claims can never push ``received_count``
        past ``total_count``.
        """

        with get_tracer().start_as_current_span(
            "coupon.claim",
            attributes={"coupon.id": str(coupon_id), "user.id": str(user_id)},
        ):
            return await self._claim(coupon_id, user_id)

    async def _claim(self, coupon_id: UUID, user_id: UUID) -> UserCoupon:
        now = utcnow()
        try:
            coupon = await self._db.get(Coupon, coupon_id, populate_existing=True)
            if coupon is None:
                raise CouponNotFoundError()

            received = await self._count_user_claims(coupon.id, user_id)
            violation = check_claimable(coupon, now, received)
            if violation is not None:
                raise violation

            reserved = await self._db.execute(
                update(Coupon)
                .where(
                    Coupon.id == coupon.id,
                    Coupon.received_count < Coupon.total_count,
                )
                .values(received_count=Coupon.received_count + 1)
                .execution_options(synchronize_session=False)
            )
            if reserved.rowcount == 0:
                raise CouponSoldOutError()

            user_coupon = UserCoupon(
                user_id=user_id,
                coupon_id=coupon.id,
                claimed_at=now,
                expires_at=compute_expiry(coupon, now),
            )
            self._db.add(user_coupon)
            await self._db.commit()
        except PromotionError as exc:
            await self._db.rollback()
            self._observability.record_claim(exc.code)
            logger.warning(
                "Coupon claim rejected",
                coupon_id=str(coupon_id),
                user_id=str(user_id),
                reason=exc.code,
            )
            raise
        except SQLAlchemyError:
            await self._db.rollback()
            logger.exception("Coupon claim failed", coupon_id=str(coupon_id), user_id=str(user_id))
            raise

        await self._db.refresh(user_coupon)
        await self._db.refresh(coupon)
        self._observability.record_claim("claimed")
        logger.info(
            "Claimed coupon",
            coupon_id=str(coupon.id),
            user_id=str(user_id),
            user_coupon_id=str(user_coupon.id),
            received_count=coupon.received_count,
        )
        return user_coupon

    async def list_claimable_coupons(
        self,
        user_id: UUID | None = None,
        *,
        page: int = 1,
        page_size: int | None = None,
    ) -> tuple[list[CouponAvailability], int]:
        """Active coupons with stock left whose claim window is open, newest first."""

        now = utcnow()
        offset, limit = page_bounds(page, page_size)
        filters = (
            Coupon.status == CouponStatus.ACTIVE,
            Coupon.start_time <= now,
            Coupon.end_time >= now,
            Coupon.received_count < Coupon.total_count,
        )
        total = await self._db.scalar(select(func.count(Coupon.id)).where(*filters))
        stmt = (
            select(Coupon)
            .where(*filters)
            .order_by(Coupon.created_at.desc(), Coupon.id.desc())
            .offset(offset)
            .limit(limit)
        )
        coupons = list((await self._db.execute(stmt)).scalars().all())

        received = await self._claims_by_coupon(user_id, [coupon.id for coupon in coupons])
        items = [self._availability(coupon, now, received.get(coupon.id, 0)) for coupon in coupons]
        return items, int(total or 0)

    async def get_coupon_detail(self, coupon_id: UUID, user_id: UUID | None = None) -> CouponAvailability:
        coupon = await self._db.get(Coupon, coupon_id, populate_existing=True)
        if coupon is None:
            raise CouponNotFoundError()
        received = 0
        if user_id is not None:
            received = await self._count_user_claims(coupon.id, user_id)
        return self._availability(coupon, utcnow(), received)

    def calculate_discount(self, coupon: Coupon, order_amount: Decimal) -> Decimal:
        return calculate_discount(coupon, order_amount)

    async def get_best_coupon_for_order(
        self,
        user_id: UUID,
        scope: CouponScope,
        order_amount: Decimal,
    ) -> tuple[UserCoupon | None, Decimal]:
        """Pick the claim granting the largest discount on the order.

        Returns ``(None, 0.00)`` when no claim yields a positive discount.
        """

        offer = await UserCouponService(self._db, observability=self._observability).get_best_offer(
            user_id, scope, order_amount
        )
        if offer is None:
            return None, ZERO
        return offer.user_coupon, offer.discount

    async def _count_user_claims(self, coupon_id: UUID, user_id: UUID) -> int:
        stmt = select(func.count(UserCoupon.id)).where(
            UserCoupon.coupon_id == coupon_id,
            UserCoupon.user_id == user_id,
        )
        return int(await self._db.scalar(stmt) or 0)

    async def _claims_by_coupon(self, user_id: UUID | None, coupon_ids: list[UUID]) -> dict[UUID, int]:
        if user_id is None or not coupon_ids:
            return {}
        stmt = (
            select(UserCoupon.coupon_id, func.count(UserCoupon.id))
            .where(UserCoupon.user_id == user_id, UserCoupon.coupon_id.in_(coupon_ids))
            .group_by(UserCoupon.coupon_id)
        )
        result = await self._db.execute(stmt)
        return {coupon_id: int(count) for coupon_id, count in result.all()}

    @staticmethod
    def _availability(coupon: Coupon, now: datetime, received_by_user: int) -> CouponAvailability:
        violation = check_claimable(coupon, now, received_by_user)
        remaining = coupon.remaining_count
        reason = violation.code if violation else None
        if reason is None and remaining <= 0:
            reason = CouponSoldOutError.code
        return CouponAvailability(
            coupon=coupon,
            received_by_user=received_by_user,
            remaining=remaining,
            can_claim=reason is None,
            reason=reason,
        )


__all__ = ["CouponAvailability", "CouponService", "check_claimable", "compute_expiry"]
