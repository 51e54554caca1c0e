from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from voucher_api.core.settings import settings
from voucher_api.db.session import get_session_factory
from voucher_api.observability.vouchers import get_voucher_store
from voucher_api.services.vouchers import RedemptionEngine, SqlRedemptionLedger, SqlVoucherCatalog


def get_redemption_engine(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> RedemptionEngine:
    return RedemptionEngine(
        SqlVoucherCatalog(session_factory),
        SqlRedemptionLedger(session_factory),
        max_attempts=settings.voucher_redemption_max_attempts,
        storage_timeout_seconds=settings.voucher_storage_timeout_seconds,
        observability=get_voucher_store(),
    )
