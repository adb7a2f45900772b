"""SQLAlchemy models package."""

from .marketing import (  # noqa: F401
    Campaign,
    CampaignStatus,
    CampaignType,
    Coupon,
    CouponDiscountType,
    CouponScope,
    CouponStatus,
    UserCoupon,
    UserCouponStatus,
)
from .user import User, UserStatusEnum  # noqa: F401
