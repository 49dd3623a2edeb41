import uuid

from fastapi import APIRouter, Depends, Query, status
from tortoise.backends.base.client import BaseDBAsyncClient

from app.api.v1.deps import get_current_user, get_db
from app.core.errors import BadRequestError, NotFoundError, PermissionDeniedError
from app.models.user import User, UserRole
from app.schemas.conversation import ShareAccessCodeIn
from app.services import code_admin
from app.services.code_admin import CodeType
from app.services.quota import get_own_permission

router = APIRouter(prefix="/access-codes", tags=["access-codes"])


@router.get("", response_model=dict)
async def list_my_access_codes(
    user: User = Depends(get_current_user),
    db: BaseDBAsyncClient = Depends(get_db),
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    """Access codes issued by the current user, newest first."""
    data = await code_admin.list_codes(db, CodeType.ACCESS, limit=limit, offset=offset, created_by_id=user.id)
    return {"success": True, "data": data}


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_my_access_code(
    body: ShareAccessCodeIn,
    user: User = Depends(get_current_user),
    db: BaseDBAsyncClient = Depends(get_db),
):
    """
    Issue an access code that lets guests chat on the current user's quota.

    Requires the share permission (admins always have it). A user with a model
    allow-list can only hand out models from that list; leaving allowedModelIds
    out passes the whole list on.

    Error codes:
        - SHARE_NOT_ALLOWED (403): Guests, or users without the share permission
        - MODEL_NOT_ALLOWED (400): Requested models outside the user's own allow-list
    """
    if user.role == UserRole.GUEST:
        raise PermissionDeniedError("Guests cannot share access", code="SHARE_NOT_ALLOWED")

    requested = body.allowedModelIds
    if not user.is_admin:
        permission = await get_own_permission(db, user)
        if not permission or not permission.is_active or not permission.can_share_access:
            raise PermissionDeniedError("Sharing access codes is not enabled for this account", code="SHARE_NOT_ALLOWED")
        own = permission.allowed_models()
        if own is not None:
            if not requested:
                requested = own
            else:
                outside = sorted(set(requested) - set(own))
                if outside:
                    raise BadRequestError(
                        f"Models not in your allow-list: {', '.join(outside)}",
                        code="MODEL_NOT_ALLOWED",
                    )

    code = await code_admin.create_access_code(
        db,
        user,
        expires_at=body.expiresAt,
        max_uses=body.maxUses,
        allowed_model_ids=requested,
    )
    await code.fetch_related("created_by", using_db=db)
    return {"success": True, "data": code_admin.code_to_dict(code)}


@router.delete("/{code_id}", response_model=dict)
async def delete_my_access_code(
    code_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: BaseDBAsyncClient = Depends(get_db),
):
    code = await code_admin.get_code(db, CodeType.ACCESS, code_id)
    if code.created_by_id != user.id:
        raise NotFoundError("Access code not found", code="CODE_NOT_FOUND")
    await code_admin.delete_code(db, CodeType.ACCESS, code_id)
    return {"success": True, "data": {"deleted": True, "codeId": str(code_id)}}
