"""API endpoints for voucher administration and redemption."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from voucher_api.api.dependencies.session import CallerIdentity, require_admin, require_user
from voucher_api.api.dependencies.vouchers import get_redemption_engine
from voucher_api.db.session import get_session
from voucher_api.models.voucher import DiscountKind, RedemptionStatus, Voucher, VoucherRedemption
from voucher_api.services.vouchers import (
    ConcurrentRedemptionConflictError,
    DuplicateVoucherCodeError,
    RedemptionEngine,
    RedemptionNotFoundError,
    RedemptionPersistenceError,
    RedemptionReceipt,
    RedemptionRequest,
    VoucherAdminService,
    VoucherDraft,
    VoucherError,
    VoucherNotFoundError,
    describe_availability,
)


router = APIRouter(prefix="/vouchers", tags=["vouchers"])


_ERROR_STATUS: tuple[tuple[type[VoucherError], int], ...] = (
    (VoucherNotFoundError, status.HTTP_404_NOT_FOUND),
    (RedemptionNotFoundError, status.HTTP_404_NOT_FOUND),
    (DuplicateVoucherCodeError, status.HTTP_409_CONFLICT),
    (ConcurrentRedemptionConflictError, status.HTTP_409_CONFLICT),
    (RedemptionPersistenceError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def _http_error(error: VoucherError) -> HTTPException:
    status_code = status.HTTP_400_BAD_REQUEST
    for error_type, mapped_status in _ERROR_STATUS:
        if isinstance(error, error_type):
            status_code = mapped_status
            break
    detail = {"error": error.code, "message": str(error), **error.details()}
    return HTTPException(status_code=status_code, detail=detail)


class VoucherCreateRequest(BaseModel):
    code: str = Field(..., min_length=3, max_length=50, description="Unique voucher code")
    name: str = Field(..., min_length=3, max_length=255)
    description: Optional[str] = None
    discount_kind: DiscountKind
    discount_value: int = Field(..., gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=8)
    min_order_amount: int = Field(0, ge=0)
    max_discount_amount: Optional[int] = Field(None, ge=0)
    max_redemptions: int = Field(1, gt=0)
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None


class VoucherUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=3, max_length=255)
    description: Optional[str] = None
    discount_kind: Optional[DiscountKind] = None
    discount_value: Optional[int] = Field(None, gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=8)
    min_order_amount: Optional[int] = Field(None, ge=0)
    max_discount_amount: Optional[int] = Field(None, ge=0)
    max_redemptions: Optional[int] = Field(None, gt=0)
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    active: Optional[bool] = None

    @model_validator(mode="after")
    def reject_null_required_fields(self) -> "VoucherUpdateRequest":
        nullable = {"description", "max_discount_amount", "window_start", "window_end"}
        for name in self.model_fields_set - nullable:
            if getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self


class RedeemRequest(BaseModel):
    order_amount: int = Field(..., gt=0, description="Order total in minor currency units")
    order_id: Optional[str] = Field(None, min_length=1, max_length=128)


class RedemptionVoidRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class VoucherResponse(BaseModel):
    id: UUID
    code: str
    name: str
    description: Optional[str]
    discount_kind: DiscountKind
    discount_value: int
    currency: str
    min_order_amount: int
    max_discount_amount: Optional[int]
    max_redemptions: int
    redeemed_count: int
    active: bool
    window_start: Optional[datetime]
    window_end: Optional[datetime]
    created_by: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]


class VoucherDetailResponse(VoucherResponse):
    is_not_started: bool
    is_expired: bool
    is_available: bool
    remaining_redemptions: int


class VoucherListResponse(BaseModel):
    count: int
    data: list[VoucherResponse]


class VoucherDeleteResponse(BaseModel):
    id: UUID
    code: str
    deleted: bool


class RedemptionResponse(BaseModel):
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
    order_id: Optional[str]


class RedemptionRecordResponse(BaseModel):
    id: UUID
    voucher_id: UUID
    user_id: str
    order_id: Optional[str]
    order_amount: int
    discount_amount: int
    final_amount: int
    status: RedemptionStatus
    redeemed_at: datetime
    cancelled_at: Optional[datetime]
    cancellation_reason: Optional[str]


def _serialize_voucher(voucher: Voucher) -> VoucherResponse:
    return VoucherResponse(
        id=voucher.id,
        code=voucher.code,
        name=voucher.name,
        description=voucher.description,
        discount_kind=voucher.discount_kind,
        discount_value=voucher.discount_value,
        currency=voucher.currency,
        min_order_amount=voucher.min_order_amount,
        max_discount_amount=voucher.max_discount_amount,
        max_redemptions=voucher.max_redemptions,
        redeemed_count=voucher.redeemed_count,
        active=voucher.active,
        window_start=voucher.window_start,
        window_end=voucher.window_end,
        created_by=voucher.created_by,
        created_at=voucher.created_at,
        updated_at=voucher.updated_at,
    )


def _serialize_voucher_detail(voucher: Voucher) -> VoucherDetailResponse:
    availability = describe_availability(voucher, datetime.now(timezone.utc))
    return VoucherDetailResponse(
        **_serialize_voucher(voucher).model_dump(),
        is_not_started=availability.is_not_started,
        is_expired=availability.is_expired,
        is_available=availability.is_available,
        remaining_redemptions=availability.remaining_redemptions,
    )


def _serialize_receipt(receipt: RedemptionReceipt) -> RedemptionResponse:
    return RedemptionResponse(
        redemption_id=receipt.redemption_id,
        voucher_code=receipt.voucher_code,
        voucher_name=receipt.voucher_name,
        discount_kind=receipt.discount_kind,
        discount_value=receipt.discount_value,
        order_amount=receipt.order_amount,
        discount_amount=receipt.discount_amount,
        final_amount=receipt.final_amount,
        currency=receipt.currency,
        redeemed_at=receipt.redeemed_at,
        order_id=receipt.order_id,
    )


def _serialize_redemption(redemption: VoucherRedemption) -> RedemptionRecordResponse:
    return RedemptionRecordResponse(
        id=redemption.id,
        voucher_id=redemption.voucher_id,
        user_id=redemption.user_id,
        order_id=redemption.order_id,
        order_amount=redemption.order_amount,
        discount_amount=redemption.discount_amount,
        final_amount=redemption.final_amount,
        status=redemption.status,
        redeemed_at=redemption.redeemed_at,
        cancelled_at=redemption.cancelled_at,
        cancellation_reason=redemption.cancellation_reason,
    )


@router.get("", response_model=VoucherListResponse)
async def list_vouchers(db: AsyncSession = Depends(get_session)) -> VoucherListResponse:
    """List vouchers, newest first."""

    vouchers = await VoucherAdminService(db).list_vouchers()
    return VoucherListResponse(count=len(vouchers), data=[_serialize_voucher(item) for item in vouchers])


@router.post("", response_model=VoucherResponse, status_code=status.HTTP_201_CREATED)
async def create_voucher(
    request: VoucherCreateRequest,
    caller: CallerIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> VoucherResponse:
    """Create a voucher (administrators only)."""

    draft = VoucherDraft(**request.model_dump())
    try:
        voucher = await VoucherAdminService(db).create_voucher(draft, created_by=caller.user_id)
    except VoucherError as error:
        raise _http_error(error) from error
    return _serialize_voucher(voucher)


@router.get("/{code}", response_model=VoucherDetailResponse)
async def get_voucher(code: str, db: AsyncSession = Depends(get_session)) -> VoucherDetailResponse:
    """Return a voucher with its current availability."""

    try:
        voucher = await VoucherAdminService(db).get_voucher_by_code(code)
    except VoucherError as error:
        raise _http_error(error) from error
    return _serialize_voucher_detail(voucher)


@router.put("/{voucher_id}", response_model=VoucherResponse)
async def update_voucher(
    voucher_id: UUID,
    request: VoucherUpdateRequest,
    _: CallerIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> VoucherResponse:
    """Partially update a voucher (administrators only)."""

    try:
        voucher = await VoucherAdminService(db).update_voucher(
            voucher_id, request.model_dump(exclude_unset=True)
        )
    except VoucherError as error:
        raise _http_error(error) from error
    return _serialize_voucher(voucher)


@router.delete("/{voucher_id}", response_model=VoucherDeleteResponse)
async def delete_voucher(
    voucher_id: UUID,
    _: CallerIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> VoucherDeleteResponse:
    """Delete a voucher that has never been redeemed (administrators only)."""

    try:
        voucher = await VoucherAdminService(db).delete_voucher(voucher_id)
    except VoucherError as error:
        raise _http_error(error) from error
    return VoucherDeleteResponse(id=voucher_id, code=voucher.code, deleted=True)


@router.post("/{code}/redeem", response_model=RedemptionResponse)
async def redeem_voucher(
    code: str,
    request: RedeemRequest,
    caller: CallerIdentity = Depends(require_user),
    engine: RedemptionEngine = Depends(get_redemption_engine),
) -> RedemptionResponse:
    """Redeem a voucher against the caller's order."""

    try:
        receipt = await engine.redeem(
            RedemptionRequest(
                voucher_code=code,
                user_id=caller.user_id,
                order_amount=request.order_amount,
                order_id=request.order_id,
            )
        )
    except VoucherError as error:
        raise _http_error(error) from error
    return _serialize_receipt(receipt)


async def _void_redemption(
    engine: RedemptionEngine,
    redemption_id: UUID,
    target: RedemptionStatus,
    reason: str | None,
) -> RedemptionRecordResponse:
    try:
        redemption = await engine.cancel_redemption(redemption_id, status=target, reason=reason)
    except VoucherError as error:
        raise _http_error(error) from error
    return _serialize_redemption(redemption)


@router.post("/redemptions/{redemption_id}/cancel", response_model=RedemptionRecordResponse)
async def cancel_redemption(
    redemption_id: UUID,
    request: RedemptionVoidRequest,
    _: CallerIdentity = Depends(require_admin),
    engine: RedemptionEngine = Depends(get_redemption_engine),
) -> RedemptionRecordResponse:
    """Cancel a redemption and release its voucher capacity (administrators only)."""

    return await _void_redemption(engine, redemption_id, RedemptionStatus.CANCELLED, request.reason)


@router.post("/redemptions/{redemption_id}/refund", response_model=RedemptionRecordResponse)
async def refund_redemption(
    redemption_id: UUID,
    request: RedemptionVoidRequest,
    _: CallerIdentity = Depends(require_admin),
    engine: RedemptionEngine = Depends(get_redemption_engine),
) -> RedemptionRecordResponse:
    """Mark a redemption refunded and release its voucher capacity (administrators only)."""

    return await _void_redemption(engine, redemption_id, RedemptionStatus.REFUNDED, request.reason)
