"""Exception hierarchy for voucher administration and redemption."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID


class VoucherError(RuntimeError):
    """Base exception for voucher workflows; ``code`` is stable across releases."""

    code = "voucher_error"

    def details(self) -> dict[str, Any]:
        return {}


class VoucherEligibilityError(VoucherError):
    """Terminal business-rule rejection; no state was written."""


class VoucherNotFoundError(VoucherEligibilityError):
    code = "not_found"

    def __init__(self, reference: str) -> None:
        super().__init__(f"Voucher '{reference}' not found")
        self.reference = reference


class VoucherInactiveError(VoucherEligibilityError):
    code = "inactive"

    def __init__(self, voucher_code: str) -> None:
        super().__init__(f"Voucher '{voucher_code}' is no longer active")
        self.voucher_code = voucher_code


class VoucherNotStartedError(VoucherEligibilityError):
    code = "not_started"

    def __init__(self, voucher_code: str, window_start: datetime) -> None:
        super().__init__(f"Voucher '{voucher_code}' cannot be used yet")
        self.voucher_code = voucher_code
        self.window_start = window_start

    def details(self) -> dict[str, Any]:
        return {"window_start": self.window_start.isoformat()}


class VoucherExpiredError(VoucherEligibilityError):
    code = "expired"

    def __init__(self, voucher_code: str, window_end: datetime) -> None:
        super().__init__(f"Voucher '{voucher_code}' has expired")
        self.voucher_code = voucher_code
        self.window_end = window_end

    def details(self) -> dict[str, Any]:
        return {"window_end": self.window_end.isoformat()}


class VoucherExhaustedError(VoucherEligibilityError):
    code = "exhausted"

    def __init__(self, voucher_code: str, max_redemptions: int) -> None:
        super().__init__(f"Voucher '{voucher_code}' has no redemptions left")
        self.voucher_code = voucher_code
        self.max_redemptions = max_redemptions

    def details(self) -> dict[str, Any]:
        return {"max_redemptions": self.max_redemptions}


class OrderBelowMinimumError(VoucherEligibilityError):
    code = "below_minimum"

    def __init__(self, min_order_amount: int, currency: str) -> None:
        super().__init__(f"Minimum order amount is {currency} {min_order_amount}")
        self.min_order_amount = min_order_amount
        self.currency = currency

    def details(self) -> dict[str, Any]:
        return {"min_order_amount": self.min_order_amount, "currency": self.currency}


class VoucherAlreadyRedeemedError(VoucherEligibilityError):
    code = "already_redeemed"

    def __init__(self, voucher_code: str, redeemed_at: datetime | None) -> None:
        super().__init__(f"Voucher '{voucher_code}' was already redeemed by this user")
        self.voucher_code = voucher_code
        self.redeemed_at = redeemed_at

    def details(self) -> dict[str, Any]:
        return {"redeemed_at": self.redeemed_at.isoformat() if self.redeemed_at else None}


class ConcurrentRedemptionConflictError(VoucherError):
    """Raised when the optimistic counter update kept losing to other redeemers."""

    code = "concurrent_conflict"

    def __init__(self, voucher_code: str, attempts: int) -> None:
        super().__init__(f"Voucher '{voucher_code}' is busy, retry the request")
        self.voucher_code = voucher_code
        self.attempts = attempts

    def details(self) -> dict[str, Any]:
        return {"attempts": self.attempts}


class RedemptionPersistenceError(VoucherError):
    """Raised when storage failed during commit; ``compensation_failed`` needs manual reconciliation."""

    code = "persistence_failure"

    def __init__(self, message: str, *, compensation_failed: bool = False) -> None:
        super().__init__(message)
        self.compensation_failed = compensation_failed

    def details(self) -> dict[str, Any]:
        return {"compensation_failed": self.compensation_failed}


class RedemptionNotFoundError(VoucherError):
    code = "redemption_not_found"

    def __init__(self, redemption_id: UUID) -> None:
        super().__init__(f"Redemption '{redemption_id}' not found")
        self.redemption_id = redemption_id


class VoucherValidationError(VoucherError):
    code = "validation_error"


class DuplicateVoucherCodeError(VoucherError):
    code = "duplicate_code"

    def __init__(self, voucher_code: str) -> None:
        super().__init__(f"Voucher with code '{voucher_code}' already exists")
        self.voucher_code = voucher_code


class VoucherInUseError(VoucherError):
    code = "voucher_in_use"

    def __init__(self, voucher_code: str, redeemed_count: int) -> None:
        super().__init__(f"Voucher '{voucher_code}' has redemptions and cannot be deleted")
        self.voucher_code = voucher_code
        self.redeemed_count = redeemed_count

    def details(self) -> dict[str, Any]:
        return {"redeemed_count": self.redeemed_count}


class StorageError(RuntimeError):
    """Raised by storage adapters for driver faults, hiding driver exception types."""


class DuplicateRedemptionError(StorageError):
    """Unique (voucher, user) SUCCESS constraint rejected a ledger insert."""

    def __init__(self, voucher_id: UUID, user_id: str, redeemed_at: datetime | None = None) -> None:
        super().__init__(f"User '{user_id}' already holds a redemption for voucher '{voucher_id}'")
        self.voucher_id = voucher_id
        self.user_id = user_id
        self.redeemed_at = redeemed_at
