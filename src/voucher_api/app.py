from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from voucher_api.core.settings import settings
from voucher_api.db.session import engine
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing


APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Voucher API starting",
        environment=settings.environment,
        max_attempts=settings.voucher_redemption_max_attempts,
        storage_timeout_seconds=settings.voucher_storage_timeout_seconds,
    )
    try:
        yield
    finally:
        await engine.dispose()
        logger.info("Voucher API stopped")


def create_app() -> FastAPI:
    """Application factory for the voucher FastAPI service."""
    configure_logging(
        service_name="voucher-api",
        environment=settings.environment,
        version=APP_VERSION,
        level=settings.log_level,
    )

    app = FastAPI(
        title="Voucher API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="voucher-api",
        service_version=APP_VERSION,
        environment=settings.environment,
    )

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
