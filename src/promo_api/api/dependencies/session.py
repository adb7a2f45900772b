"""Session-aware dependencies for member-facing promotion APIs."""

from __future__ import annotations

from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from promo_api.db.session import get_session
from promo_api.models.user import User, UserStatusEnum


def _parse_user_id(raw: str) -> UUID:
    try:
        return UUID(raw)
    except ValueError as error:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid session user identifier",
        ) from error


async def require_member_session(
    session_user: str | None = Header(None, alias="X-Session-User"),
    db: AsyncSession = Depends(get_session),
) -> User:
    """Resolve the authenticated member from forwarded session headers."""

    if not session_user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing session user context",
        )

    user = await db.get(User, _parse_user_id(session_user))
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session user not found",
        )
    if user.status != UserStatusEnum.ACTIVE.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Session user is suspended",
        )
    return user


async def optional_member_id(
    session_user: str | None = Header(None, alias="X-Session-User"),
) -> UUID | None:
    """Member id for personalising public listings, when a session is forwarded."""

    if not session_user:
        return None
    return _parse_user_id(session_user)
