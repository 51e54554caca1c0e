"""Add voucher catalog and redemption ledger tables.

Revision ID: 20261016_01
Revises:
Create Date: 2026-10-16
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261016_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


discount_kind_enum = sa.Enum("PERCENT", "FIXED", name="voucher_discount_kind")
redemption_status_enum = sa.Enum("SUCCESS", "CANCELLED", "REFUNDED", name="voucher_redemption_status")


def upgrade() -> None:
    op.create_table(
        "vouchers",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("discount_kind", discount_kind_enum, nullable=False),
        sa.Column("discount_value", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default="IDR"),
        sa.Column("min_order_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_discount_amount", sa.Integer(), nullable=True),
        sa.Column("max_redemptions", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("redeemed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("window_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("window_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("redeemed_count >= 0", name="ck_vouchers_redeemed_count_non_negative"),
        sa.CheckConstraint("redeemed_count <= max_redemptions", name="ck_vouchers_redeemed_count_within_capacity"),
        sa.CheckConstraint("max_redemptions > 0", name="ck_vouchers_max_redemptions_positive"),
        sa.CheckConstraint("discount_value > 0", name="ck_vouchers_discount_value_positive"),
    )
    op.create_index("ix_vouchers_code", "vouchers", ["code"], unique=True)

    op.create_table(
        "voucher_redemptions",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("voucher_id", sa.dialects.postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("order_id", sa.String(length=128), nullable=True),
        sa.Column("order_amount", sa.Integer(), nullable=False),
        sa.Column("discount_amount", sa.Integer(), nullable=False),
        sa.Column("final_amount", sa.Integer(), nullable=False),
        sa.Column("status", redemption_status_enum, nullable=False, server_default="SUCCESS"),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.String(), nullable=True),
        sa.ForeignKeyConstraint(["voucher_id"], ["vouchers.id"], ondelete="RESTRICT"),
        sa.CheckConstraint("order_amount > 0", name="ck_voucher_redemptions_order_amount_positive"),
        sa.CheckConstraint(
            "discount_amount >= 0 AND discount_amount <= order_amount",
            name="ck_voucher_redemptions_discount_bounds",
        ),
    )
    op.create_index("ix_voucher_redemptions_voucher_id", "voucher_redemptions", ["voucher_id"])
    op.create_index("ix_voucher_redemptions_user_id", "voucher_redemptions", ["user_id"])
    op.create_index(
        "uq_voucher_redemptions_success_pair",
        "voucher_redemptions",
        ["voucher_id", "user_id"],
        unique=True,
        postgresql_where=sa.text("status = 'SUCCESS'"),
        sqlite_where=sa.text("status = 'SUCCESS'"),
    )


def downgrade() -> None:
    op.drop_index("uq_voucher_redemptions_success_pair", table_name="voucher_redemptions")
    op.drop_index("ix_voucher_redemptions_user_id", table_name="voucher_redemptions")
    op.drop_index("ix_voucher_redemptions_voucher_id", table_name="voucher_redemptions")
    op.drop_table("voucher_redemptions")
    op.drop_index("ix_vouchers_code", table_name="vouchers")
    op.drop_table("vouchers")

    bind = op.get_bind()
    redemption_status_enum.drop(bind, checkfirst=True)
    discount_kind_enum.drop(bind, checkfirst=True)
