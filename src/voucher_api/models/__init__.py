"""SQLAlchemy models package."""

from .voucher import DiscountKind, RedemptionStatus, Voucher, VoucherRedemption  # noqa: F401
