# app/api/v1/routers/admin.py
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from tortoise.backends.base.client import BaseDBAsyncClient

from app.api.v1.deps import get_db, get_session_user, require_admin_permission
from app.config import settings
from app.core.errors import BadRequestError
from app.models.permission import UserPermission
from app.models.user import User, UserRole
from app.schemas.admin import (
    AccessCodeCreateIn,
    AdminUserCreateIn,
    AdminUserDeleteIn,
    AdminUserUpdateIn,
    CodeCreateIn,
    CodeDeleteIn,
    CodeToggleIn,
    DatabaseResetIn,
    InviteCodeCreateIn,
    UpdateAccessCodePermissionIn,
    UpdatePermissionsIn,
    UpdateStatusIn,
)
from app.services import code_admin, database_reset, user_admin
from app.services.code_admin import CodeType

router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger("uvicorn.error")


# ==============================================================================
# I. User Management Interface
#     Prefix: /api/admin/users
# ==============================================================================
@router.get("/users")
async def list_users(
    adminUserId: uuid.UUID = Query(...),
    role: Optional[UserRole] = Query(default=None),
    isActive: Optional[bool] = Query(default=None),
    includeStats: bool = Query(default=False),
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: BaseDBAsyncClient = Depends(get_db),
    current: Optional[User] = Depends(get_session_user),
):
    """
    Get paginated list of users (admin only), newest first.

    Args:
        adminUserId: Calling admin
        role / isActive: Optional filters
        includeStats: Attach conversationCount, messageCount and totalTokens per user
        offset / limit: Pagination (limit 1-200)

    Returns:
        dict: {"success": True, "data": {"items", "total", "limit", "offset"}}
    """
    await require_admin_permission(db, current, adminUserId)
    data = await user_admin.list_users(
        db,
        role=role,
        is_active=isActive,
        limit=limit,
        offset=offset,
        include_stats=includeStats,
    )
    return {"success": True, "data": data}


@router.post("/users", status_code=status.HTTP_201_CREATED)
async def create_user(
    body: AdminUserCreateIn,
    db: BaseDBAsyncClient = Depends(get_db),
    current: Optional[User] = Depends(get_session_user),
):
    """
    Create a user account (admin only).

    The username is unique case-insensitively. Non-admin accounts get an
    unrestricted default permission row; every account gets default settings.

    Error codes:
        - USER_EXISTS (400): Username or email already taken
        - ACCESS_DENIED (403): Caller is not an admin
    """
    await require_admin_permission(db, current, body.adminUserId)
    user, permission = await user_admin.create_user(
        db,
        username=body.username,
        password=body.password,
        email=body.email,
        role=body.role,
    )
    return {"success": True, "data": user_admin.user_to_dict(user, permission)}


@router.patch("/users")
async def update_user(
    payload: AdminUserUpdateIn,
    db: BaseDBAsyncClient = Depends(get_db),
    current: Optional[User] = Depends(get_session_user),
):
    """
    Update a user (admin only). The `action` field selects the operation:

    - updateStatus: ban / unban (an admin cannot ban themselves)
    - updateAccessCodePermission: allow / forbid sharing access codes
    - updatePermissions: permission tags, model allow-list and quota limits

    Error codes:
        - BAD_REQUEST (400): Unknown action or invalid fields
        - SELF_ACTION_FORBIDDEN (400): Self-deactivation
        - ACCESS_DENIED (403): Caller is not an admin
        - USER_NOT_FOUND (404): Target user does not exist
    """
    body = payload.root
    await require_admin_permission(db, current, body.adminUserId)

    if isinstance(body, UpdateStatusIn):
        user = await user_admin.update_status(db, body.adminUserId, body.userId, body.isActive)
        permission = await UserPermission.get_or_none(user_id=user.id, using_db=db)
    elif isinstance(body, UpdateAccessCodePermissionIn):
        user, permission = await user_admin.update_access_code_permission(db, body.userId, body.canShareAccessCode)
    elif isinstance(body, UpdatePermissionsIn):
        user, permission = await user_admin.update_permissions(db, body.userId, body.changes())
    else:  # pragma: no cover - the tagged union rejects anything else
        raise BadRequestError("Unknown action")

    return {"success": True, "data": user_admin.user_to_dict(user, permission)}


@router.delete("/users")
async def delete_user(
    body: AdminUserDeleteIn,
    db: BaseDBAsyncClient = Depends(get_db),
    current: Optional[User] = Depends(get_session_user),
):
    """
    Hard-delete a user and all rows it owns (admin only), in one transaction.

    Error codes:
        - SELF_ACTION_FORBIDDEN (400): Admin deleting their own account
        - ACCESS_DENIED (403): Caller is not an admin
        - USER_NOT_FOUND (404): Target user does not exist
    """
    await require_admin_permission(db, current, body.adminUserId)
    await user_admin.delete_user(db, body.adminUserId, body.userId)
    return {"success": True, "data": {"deleted": True, "userId": str(body.userId)}}


# ==============================================================================
# II. Invite / Access Code Interface
#     Prefix: /api/admin/codes
# ==============================================================================
@router.get("/codes")
async def list_codes(
    adminUserId: uuid.UUID = Query(...),
    type: CodeType = Query(default=CodeType.INVITE),
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: BaseDBAsyncClient = Depends(get_db),
    current: Optional[User] = Depends(get_session_user),
):
    """
    List invite or access codes (admin only), newest first, each with its creator.
    """
    await require_admin_permission(db, current, adminUserId)
    data = await code_admin.list_codes(db, type, limit=limit, offset=offset)
    return {"success": True, "data": data}


@router.post("/codes", status_code=status.HTTP_201_CREATED)
async def create_code(
    payload: CodeCreateIn,
    db: BaseDBAsyncClient = Depends(get_db),
    current: Optional[User] = Depends(get_session_user),
):
    """
    Issue a new invite or access code (admin only). The admin becomes its creator.
    """
    body = payload.root
    admin = await require_admin_permission(db, current, body.adminUserId)

    if isinstance(body, InviteCodeCreateIn):
        code = await code_admin.create_invite_code(
            db, admin, max_uses=body.maxUses, expires_at=body.expiresAt
        )
    elif isinstance(body, AccessCodeCreateIn):
        code = await code_admin.create_access_code(
            db,
            admin,
            expires_at=body.expiresAt,
            max_uses=body.maxUses,
            allowed_model_ids=body.allowedModelIds,
        )
    else:  # pragma: no cover - the tagged union rejects anything else
        raise BadRequestError("Unknown code type")

    await code.fetch_related("created_by", using_db=db)
    return {"success": True, "data": code_admin.code_to_dict(code)}


@router.patch("/codes")
async def toggle_code(
    body: CodeToggleIn,
    db: BaseDBAsyncClient = Depends(get_db),
    current: Optional[User] = Depends(get_session_user),
):
    """
    Flip a code's switch (admin only): `isUsed` for invite codes, `isActive`
    for access codes. No other field changes.
    """
    await require_admin_permission(db, current, body.adminUserId)
    code = await code_admin.toggle_code(db, body.type, body.codeId)
    return {"success": True, "data": code_admin.code_to_dict(code)}


@router.delete("/codes")
async def delete_code(
    body: CodeDeleteIn,
    db: BaseDBAsyncClient = Depends(get_db),
    current: Optional[User] = Depends(get_session_user),
):
    await require_admin_permission(db, current, body.adminUserId)
    await code_admin.delete_code(db, body.type, body.codeId)
    return {"success": True, "data": {"deleted": True, "codeId": str(body.codeId)}}


# ==============================================================================
# III. Database Reset Interface
#     Prefix: /api/admin/database-reset
# ==============================================================================
@router.get("/database-reset")
async def database_reset_info(
    adminUserId: uuid.UUID = Query(...),
    db: BaseDBAsyncClient = Depends(get_db),
    current: Optional[User] = Depends(get_session_user),
):
    await require_admin_permission(db, current, adminUserId)
    return {"success": True, "data": database_reset.reset_info()}


@router.post("/database-reset")
async def reset_database(
    body: DatabaseResetIn,
    db: BaseDBAsyncClient = Depends(get_db),
    current: Optional[User] = Depends(get_session_user),
):
    """
    Wipe every table and reseed reference data (admin only).

    Requires `confirmText` to be exactly "RESET DATABASE". The response reports
    the outcome and output of both steps; a failure returns 500 with the same
    report under `error.details`.
    """
    await require_admin_permission(db, current, body.adminUserId)
    if body.confirmText != settings.db_reset_confirm_text:
        raise BadRequestError(
            f'Confirmation text must be exactly "{settings.db_reset_confirm_text}"',
            code="CONFIRMATION_REQUIRED",
        )

    logger.warning("[admin] database reset requested by admin=%s", body.adminUserId)
    report = await database_reset.reset_database(db)
    return {
        "success": True,
        "data": {"message": "Database reset completed", **report.to_dict()},
    }
