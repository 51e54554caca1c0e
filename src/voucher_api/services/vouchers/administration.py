"""Administrative lifecycle operations over the voucher catalog."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from loguru import logger
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from voucher_api.core.settings import settings
from voucher_api.models.voucher import DiscountKind, Voucher, VoucherRedemption
from voucher_api.services.vouchers.eligibility import ensure_aware
from voucher_api.services.vouchers.errors import (
    DuplicateVoucherCodeError,
    VoucherInUseError,
    VoucherNotFoundError,
    VoucherValidationError,
)
from voucher_api.services.vouchers.storage import normalize_code


# Fields an administrator may change after creation; ``code`` and the
# redemption counter are immutable.
UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "description",
        "discount_kind",
        "discount_value",
        "currency",
        "min_order_amount",
        "max_discount_amount",
        "max_redemptions",
        "window_start",
        "window_end",
        "active",
    }
)


@dataclass
class VoucherDraft:
    """Validated input for a new voucher."""

    code: str
    name: str
    discount_kind: DiscountKind
    discount_value: int
    description: str | None = None
    currency: str | None = None
    min_order_amount: int = 0
    max_discount_amount: int | None = None
    max_redemptions: int = 1
    window_start: datetime | None = None
    window_end: datetime | None = None


def validate_voucher_terms(
    *,
    discount_kind: DiscountKind,
    discount_value: int,
    window_start: datetime | None,
    window_end: datetime | None,
) -> None:
    """Static invariants shared by create and update."""

    if discount_value <= 0:
        raise VoucherValidationError("discount_value must be positive")
    if discount_kind == DiscountKind.PERCENT and discount_value > 100:
        raise VoucherValidationError("discount_value for PERCENT vouchers cannot exceed 100")
    if window_start is not None and window_end is not None:
        if ensure_aware(window_end) < ensure_aware(window_start):
            raise VoucherValidationError("window_end must be on or after window_start")


class VoucherAdminService:
    """Create, update, and retire vouchers."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def list_vouchers(self) -> list[Voucher]:
        stmt = select(Voucher).order_by(Voucher.created_at.desc(), Voucher.code.asc())
        result = await self._db.execute(stmt)
        vouchers = list(result.scalars().all())
        logger.debug("Fetched vouchers", count=len(vouchers))
        return vouchers

    async def get_voucher(self, voucher_id: UUID) -> Voucher:
        voucher = await self._db.get(Voucher, voucher_id)
        if voucher is None:
            raise VoucherNotFoundError(str(voucher_id))
        return voucher

    async def get_voucher_by_code(self, code: str) -> Voucher:
        stmt = select(Voucher).where(Voucher.code == normalize_code(code))
        result = await self._db.execute(stmt)
        voucher = result.scalar_one_or_none()
        if voucher is None:
            raise VoucherNotFoundError(normalize_code(code))
        return voucher

    async def create_voucher(self, draft: VoucherDraft, *, created_by: str | None) -> Voucher:
        code = normalize_code(draft.code)
        if not code:
            raise VoucherValidationError("code must not be blank")
        validate_voucher_terms(
            discount_kind=draft.discount_kind,
            discount_value=draft.discount_value,
            window_start=draft.window_start,
            window_end=draft.window_end,
        )

        existing = await self._db.execute(select(Voucher.id).where(Voucher.code == code))
        if existing.scalar_one_or_none() is not None:
            raise DuplicateVoucherCodeError(code)

        voucher = Voucher(
            code=code,
            name=draft.name,
            description=draft.description,
            discount_kind=draft.discount_kind,
            discount_value=draft.discount_value,
            currency=(draft.currency or settings.voucher_default_currency).upper(),
            min_order_amount=draft.min_order_amount,
            max_discount_amount=draft.max_discount_amount,
            max_redemptions=draft.max_redemptions,
            redeemed_count=0,
            active=True,
            window_start=draft.window_start,
            window_end=draft.window_end,
            created_by=created_by,
        )
        self._db.add(voucher)
        try:
            await self._db.commit()
        except IntegrityError as exc:
            await self._db.rollback()
            logger.warning("Detected race when creating voucher", code=code)
            raise DuplicateVoucherCodeError(code) from exc

        await self._db.refresh(voucher)
        logger.info("Created voucher", voucher_id=str(voucher.id), code=code, created_by=created_by)
        return voucher

    async def update_voucher(self, voucher_id: UUID, changes: dict[str, Any]) -> Voucher:
        """Apply a partial update; the merged voucher must still satisfy every invariant."""

        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise VoucherValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        voucher = await self.get_voucher(voucher_id)
        if not changes:
            return voucher

        merged = {name: changes.get(name, getattr(voucher, name)) for name in UPDATABLE_FIELDS}
        validate_voucher_terms(
            discount_kind=DiscountKind(merged["discount_kind"]),
            discount_value=int(merged["discount_value"]),
            window_start=merged["window_start"],
            window_end=merged["window_end"],
        )
        if "currency" in changes and changes["currency"]:
            changes = {**changes, "currency": str(changes["currency"]).upper()}

        stmt = update(Voucher).where(Voucher.id == voucher_id)
        if "max_redemptions" in changes:
            # Capacity must stay >= redeemed_count at write time.
            stmt = stmt.where(Voucher.redeemed_count <= changes["max_redemptions"])
        stmt = stmt.values(**changes).execution_options(synchronize_session=False)

        result = await self._db.execute(stmt)
        if result.rowcount != 1:
            await self._db.rollback()
            redeemed_count = await self._current_redeemed_count(voucher_id)
            if redeemed_count is None:
                raise VoucherNotFoundError(str(voucher_id))
            raise VoucherValidationError(
                f"max_redemptions cannot be lower than redeemed_count ({redeemed_count})"
            )
        await self._db.commit()
        await self._db.refresh(voucher)
        logger.info("Updated voucher", voucher_id=str(voucher_id), fields=sorted(changes))
        return voucher

    async def delete_voucher(self, voucher_id: UUID) -> Voucher:
        voucher = await self.get_voucher(voucher_id)
        code = voucher.code
        has_ledger_rows = select(VoucherRedemption.id).where(VoucherRedemption.voucher_id == voucher_id).exists()
        stmt = (
            delete(Voucher)
            .where(Voucher.id == voucher_id, Voucher.redeemed_count == 0, ~has_ledger_rows)
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        if result.rowcount != 1:
            await self._db.rollback()
            redeemed_count = await self._current_redeemed_count(voucher_id)
            if redeemed_count is None:
                raise VoucherNotFoundError(str(voucher_id))
            raise VoucherInUseError(code, redeemed_count)
        await self._db.commit()
        logger.info("Deleted voucher", voucher_id=str(voucher_id), code=code)
        return voucher

    async def _current_redeemed_count(self, voucher_id: UUID) -> int | None:
        # Read the column directly; the identity-map copy may be stale or already deleted.
        stmt = select(Voucher.redeemed_count).where(Voucher.id == voucher_id)
        result = await self._db.execute(stmt)
        count = result.scalar_one_or_none()
        return None if count is None else int(count)


__all__ = [
    "UPDATABLE_FIELDS",
    "VoucherAdminService",
    "VoucherDraft",
    "validate_voucher_terms",
]
