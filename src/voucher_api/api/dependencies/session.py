"""Caller identity forwarded by the upstream authentication gateway."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, Header, HTTPException, status


class CallerRole(str, Enum):
    ADMIN = "ADMIN"
    USER = "USER"


@dataclass(slots=True, frozen=True)
class CallerIdentity:
    user_id: str
    role: CallerRole


async def require_caller(
    session_user: str | None = Header(None, alias="X-Session-User"),
    session_role: str | None = Header(None, alias="X-Session-Role"),
) -> CallerIdentity:
    """Resolve the authenticated caller from forwarded session headers."""

    user_id = (session_user or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing session user context",
        )

    try:
        role = CallerRole((session_role or CallerRole.USER.value).strip().upper())
    except ValueError as error:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid session role",
        ) from error

    return CallerIdentity(user_id=user_id, role=role)


async def require_admin(caller: CallerIdentity = Depends(require_caller)) -> CallerIdentity:
    if caller.role != CallerRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only administrators can access this endpoint",
        )
    return caller


async def require_user(caller: CallerIdentity = Depends(require_caller)) -> CallerIdentity:
    if caller.role != CallerRole.USER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only customers can redeem vouchers",
        )
    return caller
