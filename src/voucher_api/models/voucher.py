"""Voucher catalog and redemption ledger models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from voucher_api.db.base import Base


class DiscountKind(str, Enum):
    """How a voucher's discount value is interpreted."""

    PERCENT = "PERCENT"
    FIXED = "FIXED"


class RedemptionStatus(str, Enum):
    """Lifecycle statuses for ledger entries."""

    SUCCESS = "SUCCESS"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class Voucher(Base):
    """Voucher definition plus its cumulative redemption counter."""

    __tablename__ = "vouchers"
    __table_args__ = (
        CheckConstraint("redeemed_count >= 0", name="ck_vouchers_redeemed_count_non_negative"),
        CheckConstraint(
            "redeemed_count <= max_redemptions",
            name="ck_vouchers_redeemed_count_within_capacity",
        ),
        CheckConstraint("max_redemptions > 0", name="ck_vouchers_max_redemptions_positive"),
        CheckConstraint("discount_value > 0", name="ck_vouchers_discount_value_positive"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    code = Column(String(50), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    discount_kind = Column(SqlEnum(DiscountKind, name="voucher_discount_kind"), nullable=False)
    discount_value = Column(Integer, nullable=False)
    currency = Column(String(8), nullable=False, default="IDR", server_default="IDR")
    min_order_amount = Column(Integer, nullable=False, default=0, server_default="0")
    max_discount_amount = Column(Integer, nullable=True)
    max_redemptions = Column(Integer, nullable=False, default=1, server_default="1")
    redeemed_count = Column(Integer, nullable=False, default=0, server_default="0")
    active = Column(Boolean, nullable=False, default=True, server_default="true")
    window_start = Column(DateTime(timezone=True), nullable=True)
    window_end = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    redemptions = relationship("VoucherRedemption", back_populates="voucher")

    @property
    def remaining_redemptions(self) -> int:
        return max(int(self.max_redemptions or 0) - int(self.redeemed_count or 0), 0)


class VoucherRedemption(Base):
    """Append-only ledger entry for one committed voucher redemption."""

    __tablename__ = "voucher_redemptions"
    __table_args__ = (
        Index(
            "uq_voucher_redemptions_success_pair",
            "voucher_id",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'SUCCESS'"),
            sqlite_where=text("status = 'SUCCESS'"),
        ),
        CheckConstraint("order_amount > 0", name="ck_voucher_redemptions_order_amount_positive"),
        CheckConstraint(
            "discount_amount >= 0 AND discount_amount <= order_amount",
            name="ck_voucher_redemptions_discount_bounds",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    voucher_id = Column(
        UUID(as_uuid=True),
        ForeignKey("vouchers.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    user_id = Column(String(64), nullable=False, index=True)
    order_id = Column(String(128), nullable=True)
    order_amount = Column(Integer, nullable=False)
    discount_amount = Column(Integer, nullable=False)
    final_amount = Column(Integer, nullable=False)
    status = Column(
        SqlEnum(RedemptionStatus, name="voucher_redemption_status"),
        nullable=False,
        default=RedemptionStatus.SUCCESS,
        server_default=RedemptionStatus.SUCCESS.value,
    )
    redeemed_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(String, nullable=True)

    voucher = relationship("Voucher", back_populates="redemptions")
