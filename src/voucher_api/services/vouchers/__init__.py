"""Voucher service exports."""

from .administration import (  # noqa: F401
    UPDATABLE_FIELDS,
    VoucherAdminService,
    VoucherDraft,
    validate_voucher_terms,
)
from .discount import compute_discount, compute_final_amount  # noqa: F401
from .eligibility import VoucherAvailability, describe_availability, evaluate_eligibility  # noqa: F401
from .errors import (  # noqa: F401
    ConcurrentRedemptionConflictError,
    DuplicateRedemptionError,
    DuplicateVoucherCodeError,
    OrderBelowMinimumError,
    RedemptionNotFoundError,
    RedemptionPersistenceError,
    StorageError,
    VoucherAlreadyRedeemedError,
    VoucherEligibilityError,
    VoucherError,
    VoucherExhaustedError,
    VoucherExpiredError,
    VoucherInactiveError,
    VoucherInUseError,
    VoucherNotFoundError,
    VoucherNotStartedError,
    VoucherValidationError,
)
from .redemption import RedemptionEngine, RedemptionReceipt, RedemptionRequest  # noqa: F401
from .storage import (  # noqa: F401
    RedemptionLedger,
    SqlRedemptionLedger,
    SqlVoucherCatalog,
    VoucherCatalog,
    normalize_code,
)
