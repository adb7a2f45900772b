"""Coupon discount arithmetic."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Protocol

from promo_api.models.marketing import CouponDiscountType

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


class DiscountTerms(Protocol):
    discount_type: Any
    value: Any
    min_amount: Any
    max_discount: Any


def to_money(value: Any) -> Decimal:
    """Coerce a numeric value into a cent-quantized Decimal."""

    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _discount_type(raw: Any) -> CouponDiscountType | None:
    if isinstance(raw, CouponDiscountType):
        return raw
    try:
        return CouponDiscountType(str(raw))
    except ValueError:
        return None


def calculate_discount(coupon: DiscountTerms, order_amount: Decimal) -> Decimal:
    """Return the discount ``coupon`` grants on ``order_amount``.

    Thresholds are inclusive: an order exactly at ``min_amount`` qualifies. Percent
    discounts are rounded half-up to the cent before the ``max_discount`` cap and the
    order amount clamp are applied. Unknown discount types yield zero.
    """

    amount = to_money(order_amount)
    if amount <= ZERO or amount < to_money(coupon.min_amount):
        return ZERO

    discount_type = _discount_type(coupon.discount_type)
    if discount_type is CouponDiscountType.FIXED:
        discount = to_money(coupon.value)
    elif discount_type is CouponDiscountType.PERCENT:
        discount = to_money(amount * Decimal(str(coupon.value)))
    else:
        return ZERO

    if coupon.max_discount is not None:
        discount = min(discount, to_money(coupon.max_discount))

    discount = min(discount, amount)
    return max(discount, ZERO)


__all__ = ["CENT", "DiscountTerms", "ZERO", "calculate_discount", "to_money"]
