"""Business rules deciding whether a voucher may be redeemed."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from voucher_api.models.voucher import Voucher, VoucherRedemption
from voucher_api.services.vouchers.errors import (
    OrderBelowMinimumError,
    VoucherAlreadyRedeemedError,
    VoucherExhaustedError,
    VoucherExpiredError,
    VoucherInactiveError,
    VoucherNotFoundError,
    VoucherNotStartedError,
)


@dataclass(slots=True)
class VoucherAvailability:
    """Read model describing whether a voucher can currently be redeemed."""

    is_not_started: bool
    is_expired: bool
    is_available: bool
    remaining_redemptions: int


def ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def evaluate_eligibility(
    voucher: Voucher | None,
    *,
    voucher_code: str,
    order_amount: int,
    existing_redemption: VoucherRedemption | None,
    now: datetime,
) -> Voucher:
    """Raise the first failing rule, in reporting order; return the voucher otherwise."""

    if voucher is None:
        raise VoucherNotFoundError(voucher_code)

    if not voucher.active:
        raise VoucherInactiveError(voucher.code)

    now = ensure_aware(now)
    if voucher.window_start is not None:
        window_start = ensure_aware(voucher.window_start)
        if now < window_start:
            raise VoucherNotStartedError(voucher.code, window_start)

    if voucher.window_end is not None:
        window_end = ensure_aware(voucher.window_end)
        if now > window_end:
            raise VoucherExpiredError(voucher.code, window_end)

    if voucher.redeemed_count >= voucher.max_redemptions:
        raise VoucherExhaustedError(voucher.code, int(voucher.max_redemptions))

    if order_amount < voucher.min_order_amount:
        raise OrderBelowMinimumError(int(voucher.min_order_amount), voucher.currency)

    if existing_redemption is not None:
        redeemed_at = existing_redemption.redeemed_at
        raise VoucherAlreadyRedeemedError(
            voucher.code,
            ensure_aware(redeemed_at) if redeemed_at is not None else None,
        )

    return voucher


def describe_availability(voucher: Voucher, now: datetime) -> VoucherAvailability:
    now = ensure_aware(now)
    is_not_started = voucher.window_start is not None and now < ensure_aware(voucher.window_start)
    is_expired = voucher.window_end is not None and now > ensure_aware(voucher.window_end)
    remaining = voucher.remaining_redemptions
    return VoucherAvailability(
        is_not_started=is_not_started,
        is_expired=is_expired,
        is_available=bool(voucher.active) and not is_not_started and not is_expired and remaining > 0,
        remaining_redemptions=remaining,
    )


__all__ = ["VoucherAvailability", "describe_availability", "ensure_aware", "evaluate_eligibility"]
