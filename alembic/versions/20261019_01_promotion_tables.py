"""Promotion tables: users, coupons, user coupons and campaigns.

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


coupon_discount_type = sa.Enum("fixed", "percent", name="coupon_discount_type")
coupon_scope = sa.Enum("all", "mall", "rental", name="coupon_scope")
coupon_status = sa.Enum("active", "disabled", name="coupon_status")
user_coupon_status = sa.Enum("unused", "used", "expired", name="user_coupon_status")
campaign_type = sa.Enum("discount", "gift", "flashsale", "groupbuy", name="campaign_type")
campaign_status = sa.Enum("active", "disabled", name="campaign_status")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "coupons",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("discount_type", coupon_discount_type, nullable=False),
        sa.Column("value", sa.Numeric(10, 2), nullable=False),
        sa.Column("min_amount", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("max_discount", sa.Numeric(10, 2), nullable=True),
        sa.Column("applicable_scope", coupon_scope, nullable=False, server_default="all"),
        sa.Column("total_count", sa.Integer(), nullable=False),
        sa.Column("received_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("used_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("per_user_limit", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("valid_days", sa.Integer(), nullable=True),
        sa.Column("status", coupon_status, nullable=False, server_default="active"),
        *_timestamps(),
        sa.CheckConstraint(
            "received_count >= 0 AND received_count <= total_count",
            name="ck_coupons_received_within_total",
        ),
        sa.CheckConstraint(
            "used_count >= 0 AND used_count <= received_count",
            name="ck_coupons_used_within_received",
        ),
    )
    op.create_index("ix_coupons_status_window", "coupons", ["status", "start_time", "end_time"])

    op.create_table(
        "user_coupons",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("coupon_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("coupons.id"), nullable=False),
        sa.Column("status", user_coupon_status, nullable=False, server_default="unused"),
        sa.Column("order_id", sa.String(length=64), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_user_coupons_coupon_id", "user_coupons", ["coupon_id"])
    op.create_index("ix_user_coupons_order_id", "user_coupons", ["order_id"])
    op.create_index("ix_user_coupons_user_status", "user_coupons", ["user_id", "status"])
    op.create_index("ix_user_coupons_status_expires", "user_coupons", ["status", "expires_at"])

    op.create_table(
        "campaigns",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", campaign_type, nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("image", sa.String(length=255), nullable=True),
        sa.Column("rules", sa.JSON(), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", campaign_status, nullable=False, server_default="active"),
        *_timestamps(),
    )
    op.create_index(
        "ix_campaigns_type_status_window",
        "campaigns",
        ["type", "status", "start_time", "end_time"],
    )


def downgrade() -> None:
    op.drop_index("ix_campaigns_type_status_window", table_name="campaigns")
    op.drop_table("campaigns")
    op.drop_index("ix_user_coupons_status_expires", table_name="user_coupons")
    op.drop_index("ix_user_coupons_user_status", table_name="user_coupons")
    op.drop_index("ix_user_coupons_order_id", table_name="user_coupons")
    op.drop_index("ix_user_coupons_coupon_id", table_name="user_coupons")
    op.drop_table("user_coupons")
    op.drop_index("ix_coupons_status_window", table_name="coupons")
    op.drop_table("coupons")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    bind = op.get_bind()
    for enum in (
        campaign_status,
        campaign_type,
        user_coupon_status,
        coupon_status,
        coupon_scope,
        coupon_discount_type,
    ):
        enum.drop(bind, checkfirst=True)
