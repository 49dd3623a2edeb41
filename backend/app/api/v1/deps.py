# app/api/v1/deps.py
import uuid
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from tortoise.backends.base.client import BaseDBAsyncClient

from app.core.db import get_connection
from app.core.errors import PermissionDeniedError
from app.core.permissions import ADMIN_PANEL, check_user_permission
from app.core.security import decode_access_token
from app.models.user import User


async def get_db() -> BaseDBAsyncClient:
    """
    FastAPI dependency returning the persistence handle.

    Services never reach for a global client; routers pass this handle in.
    Tests override it with `app.dependency_overrides[get_db]`.
    """
    return get_connection()


async def get_current_user(
    request: Request,
    authorization: str | None = Header(default=None),
    db: BaseDBAsyncClient = Depends(get_db),
) -> User:
    """
    FastAPI dependency to get the current authenticated user.

    This dependency extracts and validates the JWT token from either:
    1. Authorization header (Bearer token) - preferred method
    2. HttpOnly cookie (accessToken) - fallback method

    Raises:
        HTTPException (401): AUTH_REQUIRED / AUTH_INVALID_TOKEN / AUTH_USER_NOT_FOUND
        HTTPException (403): AUTH_USER_DISABLED when the account was deactivated
    """
    token = None
    # 1) Prioritize Authorization: Bearer xxx
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization.split(" ", 1)[1].strip()
    # 2) Secondly HttpOnly Cookie: accessToken
    if not token:
        token = request.cookies.get("accessToken")

    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="AUTH_REQUIRED")

    try:
        payload = decode_access_token(token)
        user_id = uuid.UUID(str(payload.get("sub")))
    except Exception:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="AUTH_INVALID_TOKEN")

    user = await User.get_or_none(id=user_id, using_db=db)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="AUTH_USER_NOT_FOUND")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="AUTH_USER_DISABLED")
    return user


async def get_session_user(
    request: Request,
    authorization: str | None = Header(default=None),
    db: BaseDBAsyncClient = Depends(get_db),
) -> Optional[User]:
    """
    Like `get_current_user`, but yields None instead of failing.

    Admin endpoints validate their input before the permission check, so a
    missing or rejected session must not short-circuit request validation.
    """
    try:
        return await get_current_user(request, authorization, db)
    except HTTPException:
        return None


async def require_admin_permission(
    db: BaseDBAsyncClient, current: Optional[User], admin_user_id: uuid.UUID
) -> User:
    """
    Ensure the authenticated caller is the `adminUserId` it claims to be and
    holds the admin_panel permission.

    Runs inside the handler after the request has been validated and before
    any lookup or mutation.

    Raises:
        PermissionDeniedError (403): no session, session for another user, or no admin_panel
    """
    if current is None or current.id != admin_user_id:
        raise PermissionDeniedError("Admin permission required")
    if not await check_user_permission(db, current.id, ADMIN_PANEL):
        raise PermissionDeniedError("Admin permission required")
    return current
