"""Group bank accounts and settlement receipts

Revision ID: 002
Revises: 001
Create Date: 2024-02-04 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "bank_accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("restaurant_id", sa.Integer(), sa.ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("group_name", sa.String(50), nullable=False),
        sa.Column("account_name", sa.String(255), nullable=False),
        sa.Column("account_number", sa.String(50), nullable=False),
        sa.Column("bank_name", sa.String(255), nullable=False),
        sa.Column("bank_code", sa.String(20), nullable=False),
        sa.Column("branch_code", sa.String(20), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("restaurant_id", "group_name", name="uq_bank_account_group"),
        sa.CheckConstraint("LENGTH(account_number) >= 8", name="ck_bank_accounts_account_number"),
    )
    op.create_index("idx_bank_accounts_active", "bank_accounts", ["restaurant_id", "is_active"])

    # SQLite needs batch mode to alter columns
    with op.batch_alter_table("payouts") as batch:
        batch.add_column(sa.Column("provider_receipt", sa.String(100), nullable=True))
        batch.alter_column("recipient_account", type_=sa.String(255), existing_type=sa.String(100))


def downgrade() -> None:
    with op.batch_alter_table("payouts") as batch:
        batch.alter_column("recipient_account", type_=sa.String(100), existing_type=sa.String(255))
        batch.drop_column("provider_receipt")
    op.drop_index("idx_bank_accounts_active", table_name="bank_accounts")
    op.drop_table("bank_accounts")
