"""Storage contracts for the voucher catalog and redemption ledger.

The redemption engine only depends on the two protocols below. Every write
they expose is atomic on a single row; the engine composes them into a
two-phase protocol (counter increment, then ledger insert, with a
compensating decrement).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from voucher_api.models.voucher import RedemptionStatus, Voucher, VoucherRedemption
from voucher_api.services.vouchers.errors import DuplicateRedemptionError, StorageError


def normalize_code(code: str) -> str:
    return code.strip().upper()


class VoucherCatalog(Protocol):
    async def get_by_code(self, code: str) -> Voucher | None: ...

    async def get_by_id(self, voucher_id: UUID) -> Voucher | None: ...

    async def conditional_increment(self, voucher_id: UUID, expected_count: int) -> bool: ...

    async def conditional_decrement(self, voucher_id: UUID, expected_count: int) -> bool: ...


class RedemptionLedger(Protocol):
    async def find_by_voucher_and_user(self, voucher_id: UUID, user_id: str) -> VoucherRedemption | None: ...

    async def insert(self, record: VoucherRedemption) -> VoucherRedemption: ...

    async def get(self, redemption_id: UUID) -> VoucherRedemption | None: ...

    async def update_status(
        self,
        redemption_id: UUID,
        *,
        expected: RedemptionStatus,
        status: RedemptionStatus,
        reason: str | None = None,
    ) -> bool: ...


class SqlVoucherCatalog:
    """Voucher catalog backed by single-row conditional UPDATE statements."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_by_code(self, code: str) -> Voucher | None:
        stmt = select(Voucher).where(Voucher.code == normalize_code(code))
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to load voucher '{code}'") from exc

    async def get_by_id(self, voucher_id: UUID) -> Voucher | None:
        try:
            async with self._session_factory() as session:
                return await session.get(Voucher, voucher_id)
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to load voucher '{voucher_id}'") from exc

    async def conditional_increment(self, voucher_id: UUID, expected_count: int) -> bool:
        stmt = (
            update(Voucher)
            .where(
                Voucher.id == voucher_id,
                Voucher.redeemed_count == expected_count,
                Voucher.redeemed_count < Voucher.max_redemptions,
            )
            .values(redeemed_count=expected_count + 1, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        return await self._apply_counter_update(stmt, voucher_id, expected_count, "increment")

    async def conditional_decrement(self, voucher_id: UUID, expected_count: int) -> bool:
        stmt = (
            update(Voucher)
            .where(
                Voucher.id == voucher_id,
                Voucher.redeemed_count == expected_count,
                Voucher.redeemed_count > 0,
            )
            .values(redeemed_count=expected_count - 1, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        return await self._apply_counter_update(stmt, voucher_id, expected_count, "decrement")

    async def _apply_counter_update(self, stmt, voucher_id: UUID, expected_count: int, operation: str) -> bool:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(stmt)
                    applied = result.rowcount == 1
        except SQLAlchemyError as exc:
            raise StorageError(f"Voucher counter {operation} failed") from exc

        logger.debug(
            "Voucher counter update",
            voucher_id=str(voucher_id),
            operation=operation,
            expected_count=expected_count,
            applied=applied,
        )
        return applied


class SqlRedemptionLedger:
    """Redemption ledger relying on a partial unique index for duplicate protection."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def find_by_voucher_and_user(self, voucher_id: UUID, user_id: str) -> VoucherRedemption | None:
        stmt = (
            select(VoucherRedemption)
            .where(
                VoucherRedemption.voucher_id == voucher_id,
                VoucherRedemption.user_id == user_id,
                VoucherRedemption.status == RedemptionStatus.SUCCESS,
            )
            .limit(1)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise StorageError("Failed to look up existing redemption") from exc

    async def insert(self, record: VoucherRedemption) -> VoucherRedemption:
        try:
            async with self._session_factory() as session:
                session.add(record)
                try:
                    await session.commit()
                except IntegrityError as exc:
                    await session.rollback()
                    raise DuplicateRedemptionError(record.voucher_id, record.user_id) from exc
        except DuplicateRedemptionError as exc:
            existing = await self.find_by_voucher_and_user(exc.voucher_id, exc.user_id)
            if existing is not None:
                exc.redeemed_at = existing.redeemed_at
            raise
        except SQLAlchemyError as exc:
            raise StorageError("Failed to persist redemption") from exc
        return record

    async def get(self, redemption_id: UUID) -> VoucherRedemption | None:
        try:
            async with self._session_factory() as session:
                return await session.get(VoucherRedemption, redemption_id)
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to load redemption '{redemption_id}'") from exc

    async def update_status(
        self,
        redemption_id: UUID,
        *,
        expected: RedemptionStatus,
        status: RedemptionStatus,
        reason: str | None = None,
    ) -> bool:
        stmt = (
            update(VoucherRedemption)
            .where(VoucherRedemption.id == redemption_id, VoucherRedemption.status == expected)
            .values(
                status=status,
                cancelled_at=datetime.now(timezone.utc),
                cancellation_reason=reason,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(stmt)
                    updated = result.rowcount == 1
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to update redemption '{redemption_id}'") from exc
        return updated


__all__ = [
    "RedemptionLedger",
    "SqlRedemptionLedger",
    "SqlVoucherCatalog",
    "VoucherCatalog",
    "normalize_code",
]
