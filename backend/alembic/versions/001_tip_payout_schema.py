"""Tip payout schema

Revision ID: 001
Revises:
Create Date: 2024-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # Restaurants (tenants)
    op.create_table(
        "restaurants",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("slug", sa.String(100), unique=True, nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone_number", sa.String(20), nullable=True),
        sa.Column("commission_rate", sa.Numeric(5, 2), server_default="10.00", nullable=False),
        sa.Column("payout_day", sa.Integer(), server_default="28", nullable=False),
        sa.Column("notification_days", sa.Integer(), server_default="3", nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("commission_rate >= 0 AND commission_rate <= 100", name="ck_restaurants_commission_rate"),
        sa.CheckConstraint("payout_day BETWEEN 1 AND 28", name="ck_restaurants_payout_day"),
        sa.CheckConstraint("notification_days BETWEEN 0 AND 7", name="ck_restaurants_notification_days"),
    )

    # Distribution groups
    op.create_table(
        "distribution_groups",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("restaurant_id", sa.Integer(), sa.ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("group_name", sa.String(50), nullable=False),
        sa.Column("percentage", sa.Numeric(5, 2), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("restaurant_id", "group_name", name="uq_distribution_group_name"),
        sa.CheckConstraint("percentage >= 0 AND percentage <= 100", name="ck_distribution_groups_percentage"),
    )

    # Waiters
    op.create_table(
        "waiters",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("restaurant_id", sa.Integer(), sa.ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("phone_number", sa.String(20), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column(
            "distribution_group_id", sa.Integer(),
            sa.ForeignKey("distribution_groups.id", ondelete="SET NULL"), nullable=True, index=True,
        ),
        *_timestamps(),
    )

    # Tips
    op.create_table(
        "tips",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("restaurant_id", sa.Integer(), sa.ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("waiter_id", sa.Integer(), sa.ForeignKey("waiters.id", ondelete="SET NULL"), nullable=True, index=True),
        sa.Column("table_reference", sa.String(100), nullable=True),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("commission_amount", sa.Numeric(10, 2), server_default="0.00", nullable=False),
        sa.Column("net_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("tip_type", sa.String(20), nullable=False),
        sa.Column("payment_method", sa.String(20), server_default="mpesa", nullable=False),
        sa.Column("payment_status", sa.String(20), server_default="pending", nullable=False),
        sa.Column("transaction_id", sa.String(100), nullable=True, index=True),
        sa.Column("customer_phone", sa.String(20), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_tips_amount_positive"),
        sa.CheckConstraint("commission_amount >= 0 AND net_amount >= 0", name="ck_tips_split_non_negative"),
    )
    op.create_index("idx_tips_restaurant_status_created", "tips", ["restaurant_id", "payment_status", "created_at"])

    # Pooled tip split snapshots
    op.create_table(
        "tip_distributions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tip_id", sa.Integer(), sa.ForeignKey("tips.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("restaurant_id", sa.Integer(), sa.ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column(
            "group_id", sa.Integer(),
            sa.ForeignKey("distribution_groups.id", ondelete="SET NULL"), nullable=True, index=True,
        ),
        sa.Column("group_name", sa.String(50), nullable=False),
        sa.Column("percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # Payouts
    op.create_table(
        "payouts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("restaurant_id", sa.Integer(), sa.ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("waiter_id", sa.Integer(), sa.ForeignKey("waiters.id", ondelete="SET NULL"), nullable=True, index=True),
        sa.Column("payout_type", sa.String(20), nullable=False),
        sa.Column("group_name", sa.String(120), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("payout_month", sa.String(7), nullable=False),
        sa.Column("status", sa.String(20), server_default="pending", nullable=False),
        sa.Column("recipient_phone", sa.String(20), nullable=True),
        sa.Column("recipient_account", sa.String(100), nullable=True),
        sa.Column("transaction_reference", sa.String(100), nullable=True, index=True),
        sa.Column("provider", sa.String(30), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_payouts_amount_positive"),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')", name="ck_payouts_status",
        ),
    )
    op.create_index("idx_payouts_restaurant_month", "payouts", ["restaurant_id", "payout_month"])
    op.create_index("idx_payouts_status", "payouts", ["status"])

    # Notification attempt log
    op.create_table(
        "payout_notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("payout_id", sa.Integer(), sa.ForeignKey("payouts.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("template", sa.String(20), nullable=False),
        sa.Column("channel", sa.String(10), nullable=False),
        sa.Column("recipient", sa.String(255), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # Commission audit trail
    op.create_table(
        "commission_rate_changes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("restaurant_id", sa.Integer(), sa.ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("old_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("new_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("changed_by", sa.String(255), nullable=False),
        sa.Column("reason", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("commission_rate_changes")
    op.drop_table("payout_notifications")
    op.drop_index("idx_payouts_status", table_name="payouts")
    op.drop_index("idx_payouts_restaurant_month", table_name="payouts")
    op.drop_table("payouts")
    op.drop_table("tip_distributions")
    op.drop_index("idx_tips_restaurant_status_created", table_name="tips")
    op.drop_table("tips")
    op.drop_table("waiters")
    op.drop_table("distribution_groups")
    op.drop_table("restaurants")
