"""Background workers supporting async processing."""

from .coupon_expiration import CouponExpirationWorker

__all__ = ["CouponExpirationWorker"]
