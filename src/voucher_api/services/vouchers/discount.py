"""Discount computation for voucher redemptions."""

from __future__ import annotations

from voucher_api.models.voucher import DiscountKind, Voucher


def compute_discount(voucher: Voucher, order_amount: int) -> int:
    """Return the discount a voucher grants on ``order_amount``.

    PERCENT discounts truncate toward zero and respect ``max_discount_amount``;
    FIXED discounts never exceed the order itself.
    """

    value = int(voucher.discount_value)
    if voucher.discount_kind == DiscountKind.PERCENT:
        discount = (order_amount * value) // 100
        cap = voucher.max_discount_amount
        if cap is not None and discount > cap:
            discount = int(cap)
    else:
        discount = value
        if discount > order_amount:
            discount = order_amount
    return discount


def compute_final_amount(order_amount: int, discount_amount: int) -> int:
    return order_amount - discount_amount


__all__ = ["compute_discount", "compute_final_amount"]
