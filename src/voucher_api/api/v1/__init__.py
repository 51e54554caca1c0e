from fastapi import APIRouter

from .endpoints import health, observability, vouchers

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(vouchers.router)
router.include_router(observability.router)
