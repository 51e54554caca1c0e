"""Redemption engine: validate, price, and commit a voucher redemption.

A redemption is committed in two single-row steps: an optimistic increment
of the voucher counter followed by a ledger insert. When the insert fails
the counter increment is compensated, so callers only ever observe a fully
committed redemption or no change at all. A write that outlives its timeout is
settled by reading storage back before any capacity is released.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import partial
from typing import TypeVar
from uuid import UUID, uuid4

from loguru import logger
from opentelemetry import trace

from voucher_api.models.voucher import DiscountKind, RedemptionStatus, Voucher, VoucherRedemption
from voucher_api.observability.vouchers import VoucherObservabilityStore, get_voucher_store
from voucher_api.services.vouchers.discount import compute_discount, compute_final_amount
from voucher_api.services.vouchers.eligibility import ensure_aware, evaluate_eligibility
from voucher_api.services.vouchers.errors import (
    ConcurrentRedemptionConflictError,
    DuplicateRedemptionError,
    RedemptionNotFoundError,
    RedemptionPersistenceError,
    StorageError,
    VoucherAlreadyRedeemedError,
    VoucherEligibilityError,
)
from voucher_api.services.vouchers.storage import RedemptionLedger, VoucherCatalog, normalize_code


T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_COMPENSATION_ATTEMPTS = 5

tracer = trace.get_tracer(__name__)


@dataclass(slots=True)
class RedemptionRequest:
    """Shape-validated redemption input handed over by the transport layer."""

    voucher_code: str
    user_id: str
    order_amount: int
    order_id: str | None = None


@dataclass(slots=True)
class RedemptionReceipt:
    """Committed redemption returned to the caller."""

    redemption_id: UUID
    voucher_code: str
    voucher_name: str
    discount_kind: DiscountKind
    discount_value: int
    order_amount: int
    discount_amount: int
    final_amount: int
    currency: str
    redeemed_at: datetime
    order_id: str | None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _log_detached_outcome(operation: str, task: asyncio.Future) -> None:
    """Report how a transition ended after its caller was cancelled."""

    if task.cancelled():
        return
    error = task.exception()
    if error is None:
        logger.info("Redemption transition finished after caller cancelled", operation=operation)
    elif isinstance(error, VoucherEligibilityError):
        logger.info(
            "Redemption transition rejected after caller cancelled",
            operation=operation,
            reason=error.code,
        )
    else:
        logger.error(
            "Redemption transition failed after caller cancelled",
            operation=operation,
            error=repr(error),
            compensation_failed=getattr(error, "compensation_failed", False),
        )


class RedemptionEngine:
    """Drives redemption requests to a committed success or a clean failure."""

    def __init__(
        self,
        catalog: VoucherCatalog,
        ledger: RedemptionLedger,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        compensation_attempts: int = DEFAULT_COMPENSATION_ATTEMPTS,
        storage_timeout_seconds: float | None = None,
        clock: Callable[[], datetime] | None = None,
        observability: VoucherObservabilityStore | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if compensation_attempts < 1:
            raise ValueError("compensation_attempts must be at least 1")
        self._catalog = catalog
        self._ledger = ledger
        self._max_attempts = max_attempts
        self._compensation_attempts = compensation_attempts
        self._timeout = storage_timeout_seconds
        self._clock = clock or _utcnow
        self._store = observability or get_voucher_store()

    async def redeem(self, request: RedemptionRequest) -> RedemptionReceipt:
        """Redeem a voucher for a user's order."""

        code = normalize_code(request.voucher_code)
        with tracer.start_as_current_span("voucher.redeem") as span:
            span.set_attribute("voucher.code", code)
            for attempt in range(1, self._max_attempts + 1):
                voucher = await self._storage_call(self._catalog.get_by_code(code), "get_by_code")
                existing: VoucherRedemption | None = None
                if voucher is not None:
                    existing = await self._storage_call(
                        self._ledger.find_by_voucher_and_user(voucher.id, request.user_id),
                        "find_by_voucher_and_user",
                    )

                try:
                    evaluate_eligibility(
                        voucher,
                        voucher_code=code,
                        order_amount=request.order_amount,
                        existing_redemption=existing,
                        now=self._clock(),
                    )
                except VoucherEligibilityError as error:
                    self._store.record_rejection(error.code)
                    logger.info(
                        "Voucher redemption rejected",
                        voucher_code=code,
                        user_id=request.user_id,
                        reason=error.code,
                    )
                    raise

                discount_amount = compute_discount(voucher, request.order_amount)

                # Once the increment is in flight the transition must finish or compensate,
                # even if the caller goes away.
                receipt = await self._run_shielded(self._commit(voucher, request, discount_amount), "redeem")
                if receipt is not None:
                    span.set_attribute("voucher.attempts", attempt)
                    return receipt

                if attempt == self._max_attempts:
                    break
                self._store.record_conflict()
                logger.info(
                    "Voucher counter moved during redemption, retrying",
                    voucher_code=code,
                    attempt=attempt,
                    max_attempts=self._max_attempts,
                )

            logger.warning(
                "Voucher redemption conflict retries exhausted",
                voucher_code=code,
                user_id=request.user_id,
                attempts=self._max_attempts,
            )
            raise ConcurrentRedemptionConflictError(code, self._max_attempts)

    async def cancel_redemption(
        self,
        redemption_id: UUID,
        *,
        status: RedemptionStatus = RedemptionStatus.CANCELLED,
        reason: str | None = None,
    ) -> VoucherRedemption:
        """Void a successful redemption and hand its capacity back to the voucher."""

        if status == RedemptionStatus.SUCCESS:
            raise ValueError("Redemptions can only be voided as cancelled or refunded")

        redemption = await self._storage_call(self._ledger.get(redemption_id), "get_redemption")
        if redemption is None:
            raise RedemptionNotFoundError(redemption_id)

        if redemption.status != RedemptionStatus.SUCCESS:
            logger.info(
                "Redemption already voided",
                redemption_id=str(redemption_id),
                status=redemption.status.value,
            )
            return redemption

        return await self._run_shielded(self._void(redemption, status, reason), "cancel_redemption")

    async def _run_shielded(self, transition: Awaitable[T], operation: str) -> T:
        task = asyncio.ensure_future(transition)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            task.add_done_callback(partial(_log_detached_outcome, operation))
            raise

    async def _commit(
        self,
        voucher: Voucher,
        request: RedemptionRequest,
        discount_amount: int,
    ) -> RedemptionReceipt | None:
        expected_count = int(voucher.redeemed_count)
        try:
            incremented = await self._with_timeout(
                self._catalog.conditional_increment(voucher.id, expected_count)
            )
        except asyncio.TimeoutError as error:
            raise await self._settle_timed_out_increment(voucher, expected_count) from error
        except StorageError as error:
            logger.error(
                "Voucher storage call failed",
                operation="conditional_increment",
                error=repr(error),
            )
            raise RedemptionPersistenceError("Storage call 'conditional_increment' failed") from error
        if not incremented:
            return None

        committed_count = expected_count + 1
        record = VoucherRedemption(
            id=uuid4(),
            voucher_id=voucher.id,
            user_id=request.user_id,
            order_id=request.order_id,
            order_amount=request.order_amount,
            discount_amount=discount_amount,
            final_amount=compute_final_amount(request.order_amount, discount_amount),
            status=RedemptionStatus.SUCCESS,
            redeemed_at=self._clock(),
        )

        try:
            stored = await self._with_timeout(self._ledger.insert(record))
        except DuplicateRedemptionError as error:
            await self._compensate(voucher, committed_count, cause="duplicate_redemption")
            self._store.record_rejection(VoucherAlreadyRedeemedError.code)
            logger.info(
                "Voucher redemption rejected by ledger uniqueness",
                voucher_code=voucher.code,
                user_id=request.user_id,
            )
            redeemed_at = ensure_aware(error.redeemed_at) if error.redeemed_at else None
            raise VoucherAlreadyRedeemedError(voucher.code, redeemed_at) from error
        except asyncio.TimeoutError as error:
            stored = await self._settle_timed_out_insert(voucher, record, committed_count, error)
        except Exception as error:
            logger.error(
                "Redemption ledger write failed",
                voucher_code=voucher.code,
                user_id=request.user_id,
                error=repr(error),
            )
            await self._compensate(voucher, committed_count, cause="ledger_write_failed")
            raise RedemptionPersistenceError("Failed to record voucher redemption") from error

        self._store.record_success()
        logger.info(
            "Voucher redeemed",
            voucher_code=voucher.code,
            user_id=request.user_id,
            redemption_id=str(stored.id),
            discount_amount=discount_amount,
        )
        return RedemptionReceipt(
            redemption_id=stored.id,
            voucher_code=voucher.code,
            voucher_name=voucher.name,
            discount_kind=DiscountKind(voucher.discount_kind),
            discount_value=int(voucher.discount_value),
            order_amount=int(stored.order_amount),
            discount_amount=int(stored.discount_amount),
            final_amount=int(stored.final_amount),
            currency=voucher.currency,
            redeemed_at=ensure_aware(stored.redeemed_at),
            order_id=stored.order_id,
        )

    async def _settle_timed_out_increment(
        self,
        voucher: Voucher,
        expected_count: int,
    ) -> RedemptionPersistenceError:
        """Classify an increment that timed out; the returned error is raised by the caller."""

        try:
            current = await self._with_timeout(self._catalog.get_by_id(voucher.id))
        except (StorageError, asyncio.TimeoutError) as error:
            logger.error(
                "Voucher counter re-read failed after increment timeout",
                voucher_id=str(voucher.id),
                error=repr(error),
            )
            current = None

        if current is not None and int(current.redeemed_count) == expected_count:
            logger.error(
                "Voucher counter increment timed out before applying",
                voucher_code=voucher.code,
                timeout_seconds=self._timeout,
            )
            return RedemptionPersistenceError("Storage call 'conditional_increment' timed out")

        # The counter moved or could not be read; this attempt may own one unit
        # of capacity that no ledger row accounts for.
        self._store.record_compensation(succeeded=False)
        logger.critical(
            "Voucher counter increment timed out with unknown outcome; manual reconciliation required",
            voucher_id=str(voucher.id),
            voucher_code=voucher.code,
            expected_count=expected_count,
            observed_count=None if current is None else int(current.redeemed_count),
        )
        return RedemptionPersistenceError(
            "Voucher counter state unknown after increment timeout",
            compensation_failed=True,
        )

    async def _settle_timed_out_insert(
        self,
        voucher: Voucher,
        record: VoucherRedemption,
        committed_count: int,
        error: BaseException,
    ) -> VoucherRedemption:
        """Decide the outcome of a ledger insert that outlived its timeout.

        The insert may have committed after the deadline. The counter is only
        released once a read confirms the row is absent; a row that is present
        is the committed redemption.
        """

        logger.warning(
            "Redemption ledger write timed out, checking whether it landed",
            voucher_code=voucher.code,
            redemption_id=str(record.id),
            timeout_seconds=self._timeout,
        )
        try:
            landed = await self._with_timeout(self._ledger.get(record.id))
        except (StorageError, asyncio.TimeoutError) as lookup_error:
            self._store.record_compensation(succeeded=False)
            logger.critical(
                "Redemption outcome unknown after ledger timeout; manual reconciliation required",
                voucher_id=str(voucher.id),
                voucher_code=voucher.code,
                redemption_id=str(record.id),
                committed_count=committed_count,
                error=repr(lookup_error),
            )
            raise RedemptionPersistenceError(
                "Voucher redemption outcome unknown after ledger timeout",
                compensation_failed=True,
            ) from error

        if landed is not None:
            logger.info(
                "Timed out ledger write was committed",
                voucher_code=voucher.code,
                redemption_id=str(landed.id),
            )
            return landed

        await self._compensate(voucher, committed_count, cause="ledger_write_timed_out")
        raise RedemptionPersistenceError("Timed out recording voucher redemption") from error

    async def _compensate(self, voucher: Voucher, committed_count: int, *, cause: str) -> None:
        released = await self._release_capacity(voucher.id, committed_count)
        self._store.record_compensation(succeeded=released)
        if released:
            logger.warning(
                "Reverted voucher counter after failed ledger write",
                voucher_id=str(voucher.id),
                voucher_code=voucher.code,
                cause=cause,
            )
            return

        logger.critical(
            "Voucher counter compensation failed; manual reconciliation required",
            voucher_id=str(voucher.id),
            voucher_code=voucher.code,
            committed_count=committed_count,
            cause=cause,
        )
        raise RedemptionPersistenceError(
            "Failed to revert voucher counter after ledger failure",
            compensation_failed=True,
        )

    async def _void(
        self,
        redemption: VoucherRedemption,
        status: RedemptionStatus,
        reason: str | None,
    ) -> VoucherRedemption:
        flipped = await self._storage_call(
            self._ledger.update_status(
                redemption.id,
                expected=RedemptionStatus.SUCCESS,
                status=status,
                reason=reason,
            ),
            "update_status",
        )
        if not flipped:
            current = await self._storage_call(self._ledger.get(redemption.id), "get_redemption")
            return current or redemption

        voucher = await self._storage_call(self._catalog.get_by_id(redemption.voucher_id), "get_by_id")
        released = voucher is not None and await self._release_capacity(
            voucher.id, int(voucher.redeemed_count)
        )
        self._store.record_cancellation(status.value)
        if not released:
            logger.critical(
                "Voucher capacity release failed after voiding redemption; manual reconciliation required",
                redemption_id=str(redemption.id),
                voucher_id=str(redemption.voucher_id),
                status=status.value,
            )
            raise RedemptionPersistenceError(
                "Redemption voided but voucher capacity was not released",
                compensation_failed=True,
            )

        logger.info(
            "Voided voucher redemption",
            redemption_id=str(redemption.id),
            voucher_id=str(redemption.voucher_id),
            status=status.value,
            reason=reason,
        )
        refreshed = await self._storage_call(self._ledger.get(redemption.id), "get_redemption")
        return refreshed or redemption

    async def _release_capacity(self, voucher_id: UUID, expected_count: int) -> bool:
        """Decrement the counter by exactly one using compare-and-swap retries."""

        expected = expected_count
        for attempt in range(1, self._compensation_attempts + 1):
            try:
                if await self._with_timeout(self._catalog.conditional_decrement(voucher_id, expected)):
                    return True
                current = await self._with_timeout(self._catalog.get_by_id(voucher_id))
            except (StorageError, asyncio.TimeoutError) as error:
                logger.error(
                    "Voucher counter decrement failed",
                    voucher_id=str(voucher_id),
                    attempt=attempt,
                    error=repr(error),
                )
                continue

            if current is None or int(current.redeemed_count) <= 0:
                return False
            expected = int(current.redeemed_count)
        return False

    async def _with_timeout(self, awaitable: Awaitable[T]) -> T:
        if self._timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout=self._timeout)

    async def _storage_call(self, awaitable: Awaitable[T], operation: str) -> T:
        try:
            return await self._with_timeout(awaitable)
        except asyncio.TimeoutError as error:
            logger.error(
                "Voucher storage call timed out",
                operation=operation,
                timeout_seconds=self._timeout,
            )
            raise RedemptionPersistenceError(f"Storage call '{operation}' timed out") from error
        except StorageError as error:
            logger.error("Voucher storage call failed", operation=operation, error=repr(error))
            raise RedemptionPersistenceError(f"Storage call '{operation}' failed") from error


__all__ = [
    "RedemptionEngine",
    "RedemptionReceipt",
    "RedemptionRequest",
]
