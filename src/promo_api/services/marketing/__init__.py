"""Marketing service exports."""

from .campaign_service import (  # noqa: F401
    CampaignService,
    CampaignState,
    CampaignView,
    best_tier_discount,
    effective_state,
)
from .coupon_service import CouponAvailability, CouponService, compute_expiry  # noqa: F401
from .discounts import calculate_discount, to_money  # noqa: F401
from .user_coupon_service import (  # noqa: F401
    CouponOffer,
    UserCouponService,
    UserCouponView,
    rank_offers,
)
