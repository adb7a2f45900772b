"""Claimed coupon redemption, reversal and expiration."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import contains_eager, selectinload

from promo_api.models.marketing import Coupon, CouponScope, UserCoupon, UserCouponStatus
from promo_api.observability.marketing import MarketingObservabilityStore, get_marketing_store
from promo_api.observability.tracing import get_tracer

from .discounts import ZERO, calculate_discount, to_money
from .errors import (
    CouponAmountNotMetError,
    CouponNotFoundError,
    PromotionError,
    UserCouponExpiredError,
    UserCouponNotFoundError,
    UserCouponUsedError,
)
from .pagination import page_bounds
from .timeutils import ensure_aware, utcnow

_SECONDS_PER_DAY = 86_400


@dataclass
class UserCouponView:
    """A claimed coupon with display state resolved against the current time."""

    user_coupon: UserCoupon
    coupon: Coupon | None
    display_status: UserCouponStatus
    is_available: bool
    days_remaining: int
    discount: Decimal | None = None


@dataclass
class CouponOffer:
    """Order candidate paired with the discount it would grant."""

    user_coupon: UserCoupon
    discount: Decimal


def build_user_coupon_view(
    user_coupon: UserCoupon,
    now: datetime,
    *,
    discount: Decimal | None = None,
) -> UserCouponView:
    expires_at = ensure_aware(user_coupon.expires_at)
    status = user_coupon.status
    if status == UserCouponStatus.UNUSED and now > expires_at:
        status = UserCouponStatus.EXPIRED

    is_available = status == UserCouponStatus.UNUSED
    days_remaining = 0
    if is_available:
        days_remaining = max(int((expires_at - now).total_seconds() // _SECONDS_PER_DAY), 0)

    return UserCouponView(
        user_coupon=user_coupon,
        coupon=user_coupon.coupon,
        display_status=status,
        is_available=is_available,
        days_remaining=days_remaining,
        discount=discount,
    )


def rank_offers(offers: Sequence[CouponOffer]) -> list[CouponOffer]:
    """Order offers best first.

    Equal discounts go to the claim that expires soonest, then the earliest claim,
    then the lowest id, so the choice never depends on query order.
    """

    return sorted(
        offers,
        key=lambda offer: (
            -offer.discount,
            ensure_aware(offer.user_coupon.expires_at),
            ensure_aware(offer.user_coupon.claimed_at),
            str(offer.user_coupon.id),
        ),
    )


class UserCouponService:
    """Coordinates redemption and reversal of claimed coupons."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        observability: MarketingObservabilityStore | None = None,
    ) -> None:
        self._db = db_session
        self._observability = observability or get_marketing_store()

    async def list_user_coupons(
        self,
        user_id: UUID,
        *,
        status: UserCouponStatus | None = None,
        page: int = 1,
        page_size: int | None = None,
    ) -> tuple[list[UserCouponView], int]:
        """Return a page of the user's claims, newest first."""

        offset, limit = page_bounds(page, page_size)
        filters = [UserCoupon.user_id == user_id]
        if status is not None:
            filters.append(UserCoupon.status == status)

        total = await self._db.scalar(select(func.count(UserCoupon.id)).where(*filters))
        stmt = (
            select(UserCoupon)
            .options(selectinload(UserCoupon.coupon))
            .where(*filters)
            .order_by(UserCoupon.claimed_at.desc(), UserCoupon.id.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await self._db.execute(stmt)
        now = utcnow()
        views = [build_user_coupon_view(record, now) for record in result.scalars().all()]
        return views, int(total or 0)

    async def list_available_coupons(
        self,
        user_id: UUID,
        *,
        page: int = 1,
        page_size: int | None = None,
    ) -> tuple[list[UserCouponView], int]:
        """Return unused, unexpired claims ordered by expiry."""

        now = utcnow()
        offset, limit = page_bounds(page, page_size)
        filters = (
            UserCoupon.user_id == user_id,
            UserCoupon.status == UserCouponStatus.UNUSED,
            UserCoupon.expires_at > now,
        )
        total = await self._db.scalar(select(func.count(UserCoupon.id)).where(*filters))
        stmt = (
            select(UserCoupon)
            .options(selectinload(UserCoupon.coupon))
            .where(*filters)
            .order_by(UserCoupon.expires_at.asc(), UserCoupon.id.asc())
            .offset(offset)
            .limit(limit)
        )
        result = await self._db.execute(stmt)
        views = [build_user_coupon_view(record, now) for record in result.scalars().all()]
        return views, int(total or 0)

    async def get_user_coupon_detail(self, user_id: UUID, user_coupon_id: UUID) -> UserCouponView:
        """Fetch a claim owned by ``user_id``; claims of other users read as missing."""

        stmt = (
            select(UserCoupon)
            .options(selectinload(UserCoupon.coupon))
            .where(UserCoupon.id == user_coupon_id)
        )
        record = (await self._db.execute(stmt)).scalar_one_or_none()
        if record is None or record.user_id != user_id:
            raise UserCouponNotFoundError()
        return build_user_coupon_view(record, utcnow())

    async def count_by_status(self, user_id: UUID) -> dict[str, int]:
        stmt = (
            select(UserCoupon.status, func.count(UserCoupon.id))
            .where(UserCoupon.user_id == user_id)
            .group_by(UserCoupon.status)
        )
        result = await self._db.execute(stmt)
        counts = {status.value: 0 for status in UserCouponStatus}
        for status, count in result.all():
            key = status.value if isinstance(status, UserCouponStatus) else str(status)
            counts[key] = int(count)
        return counts

    async def list_order_candidates(
        self,
        user_id: UUID,
        scope: CouponScope,
        order_amount: Decimal,
        *,
        now: datetime | None = None,
    ) -> list[UserCoupon]:
        """Load claims redeemable against an order of ``scope`` and ``order_amount``."""

        reference = now or utcnow()
        amount = to_money(order_amount)
        scopes = {CouponScope.ALL, CouponScope(scope)}
        stmt = (
            select(UserCoupon)
            .join(Coupon, Coupon.id == UserCoupon.coupon_id)
            .options(contains_eager(UserCoupon.coupon))
            .where(
                UserCoupon.user_id == user_id,
                UserCoupon.status == UserCouponStatus.UNUSED,
                UserCoupon.expires_at > reference,
                Coupon.applicable_scope.in_(scopes),
                Coupon.min_amount <= amount,
            )
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        return list(result.unique().scalars().all())

    async def get_available_coupons_for_order(
        self,
        user_id: UUID,
        scope: CouponScope,
        order_amount: Decimal,
    ) -> list[UserCouponView]:
        """Every qualifying claim annotated with its discount, best first."""

        now = utcnow()
        offers = await self._rank_order_offers(user_id, scope, order_amount, now=now)
        return [build_user_coupon_view(offer.user_coupon, now, discount=offer.discount) for offer in offers]

    async def _rank_order_offers(
        self,
        user_id: UUID,
        scope: CouponScope,
        order_amount: Decimal,
        *,
        now: datetime,
    ) -> list[CouponOffer]:
        candidates = await self.list_order_candidates(user_id, scope, order_amount, now=now)
        offers = [
            CouponOffer(user_coupon=candidate, discount=calculate_discount(candidate.coupon, order_amount))
            for candidate in candidates
            if candidate.coupon is not None
        ]
        return rank_offers(offers)

    async def get_best_offer(
        self,
        user_id: UUID,
        scope: CouponScope,
        order_amount: Decimal,
    ) -> CouponOffer | None:
        offers = await self._rank_order_offers(user_id, scope, order_amount, now=utcnow())
        if not offers or offers[0].discount <= ZERO:
            return None
        return offers[0]

    async def use_coupon(
        self,
        user_coupon_id: UUID,
        order_id: str | UUID,
        order_amount: Decimal,
    ) -> tuple[UserCoupon, Decimal]:
        """Redeem a claim against an order and return the granted discount.

        The expiry check runs even when the status still reads unused, since the
        sweeper may not have visited the row yet.
        """

        with get_tracer().start_as_current_span(
            "coupon.redeem",
            attributes={"user_coupon.id": str(user_coupon_id), "order.id": str(order_id)},
        ):
            return await self._use_coupon(user_coupon_id, order_id, order_amount)

    async def _use_coupon(
        self,
        user_coupon_id: UUID,
        order_id: str | UUID,
        order_amount: Decimal,
    ) -> tuple[UserCoupon, Decimal]:
        now = utcnow()
        try:
            user_coupon = await self._load_with_coupon(user_coupon_id)
            if user_coupon is None:
                raise UserCouponNotFoundError()
            if user_coupon.status != UserCouponStatus.UNUSED:
                raise UserCouponUsedError()
            if now > ensure_aware(user_coupon.expires_at):
                raise UserCouponExpiredError()

            coupon = user_coupon.coupon
            if coupon is None:
                raise CouponNotFoundError()
            amount = to_money(order_amount)
            if amount < to_money(coupon.min_amount):
                raise CouponAmountNotMetError()

            discount = calculate_discount(coupon, amount)

            marked = await self._db.execute(
                update(UserCoupon)
                .where(
                    UserCoupon.id == user_coupon.id,
                    UserCoupon.status == UserCouponStatus.UNUSED,
                )
                .values(status=UserCouponStatus.USED, order_id=str(order_id), used_at=now)
                .execution_options(synchronize_session=False)
            )
            if marked.rowcount == 0:
                raise UserCouponUsedError()

            await self._db.execute(
                update(Coupon)
                .where(Coupon.id == coupon.id)
                .values(used_count=Coupon.used_count + 1)
                .execution_options(synchronize_session=False)
            )
            await self._db.commit()
        except PromotionError as exc:
            await self._db.rollback()
            self._observability.record_redemption(exc.code)
            logger.warning(
                "Coupon redemption rejected",
                user_coupon_id=str(user_coupon_id),
                order_id=str(order_id),
                reason=exc.code,
            )
            raise
        except SQLAlchemyError:
            await self._db.rollback()
            raise

        await self._db.refresh(user_coupon)
        await self._db.refresh(coupon)
        self._observability.record_redemption("used", discount)
        logger.info(
            "Redeemed coupon",
            user_coupon_id=str(user_coupon.id),
            coupon_id=str(coupon.id),
            order_id=str(order_id),
            discount=str(discount),
        )
        return user_coupon, discount

    async def unuse_coupon(self, user_coupon_id: UUID) -> UserCoupon:
        """Return a redeemed claim to the user's pool.

        Safe to call speculatively: claims that are not currently used are left
        untouched and the call still succeeds.
        """

        try:
            user_coupon = await self._db.get(UserCoupon, user_coupon_id, populate_existing=True)
            if user_coupon is None:
                raise UserCouponNotFoundError()
            released = await self._release(user_coupon)
            await self._db.commit()
        except PromotionError as exc:
            await self._db.rollback()
            self._observability.record_reversal(exc.code)
            raise
        except SQLAlchemyError:
            await self._db.rollback()
            raise

        if released:
            await self._db.refresh(user_coupon)
        self._observability.record_reversal("released" if released else "noop")
        return user_coupon

    async def unuse_coupon_for_order(self, order_id: str | UUID) -> int:
        """Release whichever claims are attached to ``order_id``."""

        stmt = (
            select(UserCoupon)
            .where(
                UserCoupon.order_id == str(order_id),
                UserCoupon.status == UserCouponStatus.USED,
            )
            .execution_options(populate_existing=True)
        )
        try:
            records = list((await self._db.execute(stmt)).scalars().all())
            released = 0
            for record in records:
                if await self._release(record):
                    released += 1
            await self._db.commit()
        except SQLAlchemyError:
            await self._db.rollback()
            raise

        for _ in range(released):
            self._observability.record_reversal("released")
        if not released:
            self._observability.record_reversal("noop")
        logger.info("Released coupons for order", order_id=str(order_id), released=released)
        return released

    async def expire_user_coupons(self, *, reference_time: datetime | None = None) -> int:
        """Flip every unused claim past its expiry to expired.

        Only unused rows are touched, so claims redeemed in the meantime keep their
        used status, and coupon counters are left alone.
        """

        horizon = reference_time or utcnow()
        try:
            result = await self._db.execute(
                update(UserCoupon)
                .where(
                    UserCoupon.status == UserCouponStatus.UNUSED,
                    UserCoupon.expires_at < horizon,
                )
                .values(status=UserCouponStatus.EXPIRED)
                .execution_options(synchronize_session=False)
            )
            await self._db.commit()
        except SQLAlchemyError:
            await self._db.rollback()
            raise

        expired = int(result.rowcount or 0)
        self._observability.record_sweep(expired)
        logger.info("Expired user coupons", expired=expired, horizon=horizon.isoformat())
        return expired

    async def _load_with_coupon(self, user_coupon_id: UUID) -> UserCoupon | None:
        stmt = (
            select(UserCoupon)
            .options(selectinload(UserCoupon.coupon))
            .where(UserCoupon.id == user_coupon_id)
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def _release(self, user_coupon: UserCoupon) -> bool:
        if user_coupon.status != UserCouponStatus.USED:
            logger.debug(
                "Coupon reversal skipped",
                user_coupon_id=str(user_coupon.id),
                status=user_coupon.status.value,
            )
            return False

        reverted = await self._db.execute(
            update(UserCoupon)
            .where(
                UserCoupon.id == user_coupon.id,
                UserCoupon.status == UserCouponStatus.USED,
            )
            .values(status=UserCouponStatus.UNUSED, order_id=None, used_at=None)
            .execution_options(synchronize_session=False)
        )
        if reverted.rowcount == 0:
            return False

        await self._db.execute(
            update(Coupon)
            .where(Coupon.id == user_coupon.coupon_id, Coupon.used_count > 0)
            .values(used_count=Coupon.used_count - 1)
            .execution_options(synchronize_session=False)
        )
        logger.info(
            "Released coupon",
            user_coupon_id=str(user_coupon.id),
            coupon_id=str(user_coupon.coupon_id),
        )
        return True


__all__ = [
    "CouponOffer",
    "UserCouponService",
    "UserCouponView",
    "build_user_coupon_view",
    "rank_offers",
]
