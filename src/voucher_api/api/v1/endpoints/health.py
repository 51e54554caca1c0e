from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from fastapi import APIRouter, Depends
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from voucher_api.core.settings import settings
from voucher_api.db.session import get_session


router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "error"]
    detail: str | None = Field(default=None, description="Human readable status detail")
    checked_at: str = Field(..., description="ISO timestamp of the check")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "error"]
    environment: str
    components: dict[str, ComponentStatus]


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok", "message": "Voucher service is running"}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(session: AsyncSession = Depends(get_session)) -> ReadinessPayload:
    checked_at = datetime.now(timezone.utc).isoformat()
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as error:
        logger.warning("Readiness database probe failed", error=str(error))
        database = ComponentStatus(status="error", detail="Database unreachable", checked_at=checked_at)
    else:
        database = ComponentStatus(status="ready", checked_at=checked_at)

    return ReadinessPayload(
        status=database.status,
        environment=settings.environment,
        components={"database": database},
    )
