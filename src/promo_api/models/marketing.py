"""Coupon, user coupon and campaign domain models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from promo_api.db.base import Base


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class CouponDiscountType(str, Enum):
    """How a coupon's value is applied to an order amount."""

    FIXED = "fixed"
    PERCENT = "percent"


class CouponScope(str, Enum):
    """Order channels a coupon can be redeemed against."""

    ALL = "all"
    MALL = "mall"
    RENTAL = "rental"


class CouponStatus(str, Enum):
    ACTIVE = "active"
    DISABLED = "disabled"


class UserCouponStatus(str, Enum):
    """Lifecycle of a claimed coupon."""

    UNUSED = "unused"
    USED = "used"
    EXPIRED = "expired"


class CampaignType(str, Enum):
    TIERED_DISCOUNT = "discount"
    GIFT = "gift"
    FLASH_SALE = "flashsale"
    GROUP_BUY = "groupbuy"


class CampaignStatus(str, Enum):
    ACTIVE = "active"
    DISABLED = "disabled"


class Coupon(Base):
    """Coupon template with a bounded inventory of claims."""

    __tablename__ = "coupons"
    __table_args__ = (
        CheckConstraint(
            "received_count >= 0 AND received_count <= total_count",
            name="received_within_total",
        ),
        CheckConstraint(
            "used_count >= 0 AND used_count <= received_count",
            name="used_within_received",
        ),
        Index("ix_coupons_status_window", "status", "start_time", "end_time"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(100), nullable=False)
    description = Column(String(255), nullable=True)
    discount_type = Column(
        SqlEnum(CouponDiscountType, name="coupon_discount_type", values_callable=_enum_values),
        nullable=False,
    )
    value = Column(Numeric(10, 2), nullable=False)
    min_amount = Column(Numeric(10, 2), nullable=False, default=0, server_default="0")
    max_discount = Column(Numeric(10, 2), nullable=True)
    applicable_scope = Column(
        SqlEnum(CouponScope, name="coupon_scope", values_callable=_enum_values),
        nullable=False,
        default=CouponScope.ALL,
        server_default=CouponScope.ALL.value,
    )
    total_count = Column(Integer, nullable=False)
    received_count = Column(Integer, nullable=False, default=0, server_default="0")
    used_count = Column(Integer, nullable=False, default=0, server_default="0")
    per_user_limit = Column(Integer, nullable=False, default=1, server_default="1")
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    valid_days = Column(Integer, nullable=True)
    status = Column(
        SqlEnum(CouponStatus, name="coupon_status", values_callable=_enum_values),
        nullable=False,
        default=CouponStatus.ACTIVE,
        server_default=CouponStatus.ACTIVE.value,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    user_coupons = relationship("UserCoupon", back_populates="coupon")

    @property
    def remaining_count(self) -> int:
        return max(int(self.total_count or 0) - int(self.received_count or 0), 0)


class UserCoupon(Base):
    """A member's claim on a coupon."""

    __tablename__ = "user_coupons"
    __table_args__ = (
        Index("ix_user_coupons_user_status", "user_id", "status"),
        Index("ix_user_coupons_status_expires", "status", "expires_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    coupon_id = Column(UUID(as_uuid=True), ForeignKey("coupons.id"), nullable=False, index=True)
    status = Column(
        SqlEnum(UserCouponStatus, name="user_coupon_status", values_callable=_enum_values),
        nullable=False,
        default=UserCouponStatus.UNUSED,
        server_default=UserCouponStatus.UNUSED.value,
    )
    order_id = Column(String(64), nullable=True, index=True)
    claimed_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)

    coupon = relationship("Coupon", back_populates="user_coupons")


class Campaign(Base):
    """Time-boxed promotional rule independent of coupons."""

    __tablename__ = "campaigns"
    __table_args__ = (
        Index("ix_campaigns_type_status_window", "type", "status", "start_time", "end_time"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(100), nullable=False)
    campaign_type = Column(
        "type",
        SqlEnum(CampaignType, name="campaign_type", values_callable=_enum_values),
        nullable=False,
    )
    description = Column(Text, nullable=True)
    image = Column(String(255), nullable=True)
    rules = Column(JSON, nullable=False, default=dict)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    status = Column(
        SqlEnum(CampaignStatus, name="campaign_status", values_callable=_enum_values),
        nullable=False,
        default=CampaignStatus.ACTIVE,
        server_default=CampaignStatus.ACTIVE.value,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


__all__ = [
    "Campaign",
    "CampaignStatus",
    "CampaignType",
    "Coupon",
    "CouponDiscountType",
    "CouponScope",
    "CouponStatus",
    "UserCoupon",
    "UserCouponStatus",
]
