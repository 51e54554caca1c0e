import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path
from uuid import UUID, uuid4


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import voucher_api.models  # noqa: E402,F401
from voucher_api.app import create_app  # noqa: E402
from voucher_api.db.base import Base  # noqa: E402
from voucher_api.db.session import get_session, get_session_factory  # noqa: E402
from voucher_api.models.voucher import DiscountKind, RedemptionStatus, Voucher, VoucherRedemption  # noqa: E402
from voucher_api.observability.vouchers import VoucherObservabilityStore, get_voucher_store  # noqa: E402
from voucher_api.services.vouchers import DuplicateRedemptionError, StorageError, normalize_code  # noqa: E402


def build_voucher(**overrides) -> Voucher:
    values = {
        "id": uuid4(),
        "code": "SAVE30",
        "name": "Save thirty",
        "description": None,
        "discount_kind": DiscountKind.PERCENT,
        "discount_value": 30,
        "currency": "IDR",
        "min_order_amount": 0,
        "max_discount_amount": None,
        "max_redemptions": 1,
        "redeemed_count": 0,
        "active": True,
        "window_start": None,
        "window_end": None,
        "created_by": "admin-1",
    }
    values.update(overrides)
    return Voucher(**values)


def _copy_voucher(voucher: Voucher) -> Voucher:
    return build_voucher(
        **{column.name: getattr(voucher, column.name) for column in Voucher.__table__.columns}
    )


class InMemoryVoucherCatalog:
    """Catalog double with the same single-row conditional semantics as the SQL adapter."""

    def __init__(self) -> None:
        self.vouchers: dict[UUID, Voucher] = {}
        self.reject_increments = False
        self.fail_decrements = False
        self.increment_gate: asyncio.Event | None = None
        self.increment_delay = 0.0
        self.increment_calls = 0
        self.decrement_calls = 0

    def add(self, voucher: Voucher) -> Voucher:
        self.vouchers[voucher.id] = voucher
        return voucher

    def counter(self, voucher_id: UUID) -> int:
        return self.vouchers[voucher_id].redeemed_count

    async def get_by_code(self, code: str) -> Voucher | None:
        await asyncio.sleep(0)
        for voucher in self.vouchers.values():
            if voucher.code == normalize_code(code):
                return _copy_voucher(voucher)
        return None

    async def get_by_id(self, voucher_id: UUID) -> Voucher | None:
        await asyncio.sleep(0)
        voucher = self.vouchers.get(voucher_id)
        return _copy_voucher(voucher) if voucher is not None else None

    async def conditional_increment(self, voucher_id: UUID, expected_count: int) -> bool:
        await asyncio.sleep(0)
        self.increment_calls += 1
        if self.increment_gate is not None:
            await self.increment_gate.wait()
        voucher = self.vouchers.get(voucher_id)
        if self.reject_increments or voucher is None:
            return False
        if voucher.redeemed_count != expected_count or voucher.redeemed_count >= voucher.max_redemptions:
            return False
        voucher.redeemed_count = expected_count + 1
        if self.increment_delay:
            await asyncio.sleep(self.increment_delay)
        return True

    async def conditional_decrement(self, voucher_id: UUID, expected_count: int) -> bool:
        await asyncio.sleep(0)
        self.decrement_calls += 1
        if self.fail_decrements:
            raise StorageError("catalog unavailable")
        voucher = self.vouchers.get(voucher_id)
        if voucher is None or voucher.redeemed_count != expected_count or voucher.redeemed_count <= 0:
            return False
        voucher.redeemed_count = expected_count - 1
        return True


class InMemoryRedemptionLedger:
    """Ledger double enforcing one SUCCESS row per (voucher, user) with fault injection hooks."""

    def __init__(self) -> None:
        self.records: dict[UUID, VoucherRedemption] = {}
        self.insert_error: Exception | None = None
        self.insert_gate: asyncio.Event | None = None
        self.insert_delay = 0.0
        self.get_error: Exception | None = None
        self.insert_started = asyncio.Event()
        self.insert_completed = asyncio.Event()

    def successful(self) -> list[VoucherRedemption]:
        return [record for record in self.records.values() if record.status == RedemptionStatus.SUCCESS]

    def _find_success(self, voucher_id: UUID, user_id: str) -> VoucherRedemption | None:
        for record in self.records.values():
            if (
                record.voucher_id == voucher_id
                and record.user_id == user_id
                and record.status == RedemptionStatus.SUCCESS
            ):
                return record
        return None

    async def find_by_voucher_and_user(self, voucher_id: UUID, user_id: str) -> VoucherRedemption | None:
        await asyncio.sleep(0)
        return self._find_success(voucher_id, user_id)

    async def insert(self, record: VoucherRedemption) -> VoucherRedemption:
        self.insert_started.set()
        if self.insert_gate is not None:
            await self.insert_gate.wait()
        await asyncio.sleep(0)
        if self.insert_error is not None:
            raise self.insert_error
        existing = self._find_success(record.voucher_id, record.user_id)
        if existing is not None:
            raise DuplicateRedemptionError(record.voucher_id, record.user_id, existing.redeemed_at)
        self.records[record.id] = record
        self.insert_completed.set()
        if self.insert_delay:
            await asyncio.sleep(self.insert_delay)
        return record

    async def get(self, redemption_id: UUID) -> VoucherRedemption | None:
        await asyncio.sleep(0)
        if self.get_error is not None:
            raise self.get_error
        return self.records.get(redemption_id)

    async def update_status(
        self,
        redemption_id: UUID,
        *,
        expected: RedemptionStatus,
        status: RedemptionStatus,
        reason: str | None = None,
    ) -> bool:
        await asyncio.sleep(0)
        record = self.records.get(redemption_id)
        if record is None or record.status != expected:
            return False
        record.status = status
        record.cancelled_at = datetime.now(timezone.utc)
        record.cancellation_reason = reason
        return True


@pytest.fixture
def catalog() -> InMemoryVoucherCatalog:
    return InMemoryVoucherCatalog()


@pytest.fixture
def ledger() -> InMemoryRedemptionLedger:
    return InMemoryRedemptionLedger()


@pytest.fixture
def voucher_store() -> VoucherObservabilityStore:
    return VoucherObservabilityStore()


@pytest.fixture
def reset_voucher_store() -> VoucherObservabilityStore:
    store = get_voucher_store()
    store.reset()
    try:
        yield store
    finally:
        store.reset()


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture
def persist_voucher(session_factory):
    async def _persist(**overrides) -> Voucher:
        voucher = build_voucher(**overrides)
        async with session_factory() as session:
            session.add(voucher)
            await session.commit()
        return voucher

    return _persist


@pytest_asyncio.fixture
async def app_with_db(session_factory, reset_voucher_store):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()
