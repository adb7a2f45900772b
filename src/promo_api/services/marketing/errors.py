"""Business-rule violations raised by the promotion services."""

from __future__ import annotations


class PromotionError(RuntimeError):
    """Base class for recoverable coupon and campaign rule violations.

    Storage failures are not wrapped in this hierarchy; they surface as the
    underlying SQLAlchemy exceptions.
    """

    code: str = "promotion_error"
    default_message: str = "Promotion rule violated"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class NotFoundError(PromotionError):
    """A referenced coupon, claim or campaign does not exist."""


class ConflictError(PromotionError):
    """The target's current state forbids the operation."""


class RuleViolationError(PromotionError):
    """The request does not satisfy a redemption rule."""


class CouponNotFoundError(NotFoundError):
    code = "coupon_not_found"
    default_message = "Coupon does not exist"


class CouponNotActiveError(ConflictError):
    code = "coupon_not_active"
    default_message = "Coupon is not active"


class CouponNotStartedError(ConflictError):
    code = "coupon_not_started"
    default_message = "Coupon claim window has not opened yet"


class CouponExpiredError(ConflictError):
    code = "coupon_expired"
    default_message = "Coupon claim window has closed"


class CouponSoldOutError(ConflictError):
    code = "coupon_sold_out"
    default_message = "Coupon has been fully claimed"


class CouponLimitExceededError(ConflictError):
    code = "coupon_limit_exceeded"
    default_message = "Per-user claim limit reached"


class CouponAmountNotMetError(RuleViolationError):
    code = "coupon_amount_not_met"
    default_message = "Order amount is below the coupon threshold"


class UserCouponNotFoundError(NotFoundError):
    code = "user_coupon_not_found"
    default_message = "Claimed coupon does not exist"


class UserCouponUsedError(ConflictError):
    code = "user_coupon_used"
    default_message = "Claimed coupon is not available for use"


class UserCouponExpiredError(ConflictError):
    code = "user_coupon_expired"
    default_message = "Claimed coupon has expired"


class CampaignNotFoundError(NotFoundError):
    code = "campaign_not_found"
    default_message = "Campaign does not exist"


class CampaignRuleInvalidError(RuleViolationError):
    code = "campaign_rule_invalid"
    default_message = "Campaign rules are malformed"


__all__ = [
    "CampaignNotFoundError",
    "CampaignRuleInvalidError",
    "ConflictError",
    "CouponAmountNotMetError",
    "CouponExpiredError",
    "CouponLimitExceededError",
    "CouponNotActiveError",
    "CouponNotFoundError",
    "CouponNotStartedError",
    "CouponSoldOutError",
    "NotFoundError",
    "PromotionError",
    "RuleViolationError",
    "UserCouponExpiredError",
    "UserCouponNotFoundError",
    "UserCouponUsedError",
]
