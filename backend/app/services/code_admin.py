"""
Invite / access code lifecycle: issuance, listing, toggling, deletion and redemption.
"""
import datetime as dt
import logging
import uuid
from enum import Enum
from typing import Optional, Union

from tortoise.backends.base.client import BaseDBAsyncClient

from ..core.errors import BadRequestError, NotFoundError
from ..models.codes import AccessCode, InviteCode
from ..models.permission import join_model_ids
from ..models.user import User
from .code_generator import generate_unique_code, normalize_code
from .quota import utc_now

logger = logging.getLogger(__name__)


class CodeType(str, Enum):
    INVITE = "invite"
    ACCESS = "access"


_MODELS = {
    CodeType.INVITE: InviteCode,
    CodeType.ACCESS: AccessCode,
}

AnyCode = Union[InviteCode, AccessCode]


def _iso(value: Optional[dt.datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _creator(code: AnyCode) -> Optional[dict]:
    creator = code.created_by if isinstance(code.created_by, User) else None
    if creator is None:
        return None
    return {"id": str(creator.id), "username": creator.username}


def invite_code_to_dict(code: InviteCode, now: Optional[dt.datetime] = None) -> dict:
    now = now or utc_now()
    return {
        "id": str(code.id),
        "type": CodeType.INVITE.value,
        "code": code.code,
        "maxUses": code.max_uses,
        "currentUses": code.current_uses,
        "isUsed": code.is_used,
        "expiresAt": _iso(code.expires_at),
        "createdAt": _iso(code.created_at),
        "createdBy": str(code.created_by_id),
        "creator": _creator(code),
        "isUsable": code.is_usable(now),
    }


def access_code_to_dict(code: AccessCode, now: Optional[dt.datetime] = None) -> dict:
    now = now or utc_now()
    return {
        "id": str(code.id),
        "type": CodeType.ACCESS.value,
        "code": code.code,
        "isActive": code.is_active,
        "maxUses": code.max_uses,
        "currentUses": code.current_uses,
        "allowedModelIds": code.allowed_models(),
        "expiresAt": _iso(code.expires_at),
        "createdAt": _iso(code.created_at),
        "createdBy": str(code.created_by_id),
        "creator": _creator(code),
        "isUsable": code.is_usable(now),
    }


def code_to_dict(code: AnyCode) -> dict:
    if isinstance(code, InviteCode):
        return invite_code_to_dict(code)
    return access_code_to_dict(code)


async def list_codes(
    db: BaseDBAsyncClient,
    code_type: CodeType,
    *,
    limit: int = 50,
    offset: int = 0,
    created_by_id: Optional[uuid.UUID] = None,
) -> dict:
    """Page through codes of one type, newest first, with their creator."""
    model_cls = _MODELS[CodeType(code_type)]
    qs = model_cls.all(using_db=db)
    if created_by_id is not None:
        qs = qs.filter(created_by_id=created_by_id)
    total = await qs.count()
    rows = await qs.order_by("-created_at").offset(offset).limit(limit).prefetch_related("created_by")
    return {
        "type": CodeType(code_type).value,
        "items": [code_to_dict(r) for r in rows],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


async def create_invite_code(
    db: BaseDBAsyncClient,
    creator: User,
    *,
    max_uses: int = 1,
    expires_at: Optional[dt.datetime] = None,
) -> InviteCode:
    if max_uses < 1:
        raise BadRequestError("maxUses must be at least 1")
    code = await InviteCode.create(
        code=await generate_unique_code(db, InviteCode),
        created_by=creator,
        max_uses=max_uses,
        expires_at=expires_at,
        using_db=db,
    )
    logger.info("[codes] invite code id=%s created by=%s", code.id, creator.id)
    return code


async def create_access_code(
    db: BaseDBAsyncClient,
    creator: User,
    *,
    expires_at: Optional[dt.datetime] = None,
    max_uses: Optional[int] = None,
    allowed_model_ids: Optional[list[str]] = None,
) -> AccessCode:
    if max_uses is not None and max_uses < 1:
        raise BadRequestError("maxUses must be at least 1")
    code = await AccessCode.create(
        code=await generate_unique_code(db, AccessCode),
        created_by=creator,
        expires_at=expires_at,
        max_uses=max_uses,
        allowed_model_ids=join_model_ids(allowed_model_ids),
        using_db=db,
    )
    logger.info("[codes] access code id=%s created by=%s", code.id, creator.id)
    return code


async def get_code(db: BaseDBAsyncClient, code_type: CodeType, code_id: uuid.UUID) -> AnyCode:
    code_type = CodeType(code_type)
    code = await _MODELS[code_type].get_or_none(id=code_id, using_db=db)
    if not code:
        raise NotFoundError(f"{code_type.value.capitalize()} code not found", code="CODE_NOT_FOUND")
    return code


async def toggle_code(db: BaseDBAsyncClient, code_type: CodeType, code_id: uuid.UUID) -> AnyCode:
    """
    Flip the code's admin switch: `is_used` for invite codes, `is_active` for
    access codes. Only that column is written.
    """
    code = await get_code(db, code_type, code_id)
    if isinstance(code, InviteCode):
        code.is_used = not code.is_used
        await code.save(using_db=db, update_fields=["is_used"])
    else:
        code.is_active = not code.is_active
        await code.save(using_db=db, update_fields=["is_active"])
    await code.fetch_related("created_by", using_db=db)
    return code


async def delete_code(db: BaseDBAsyncClient, code_type: CodeType, code_id: uuid.UUID) -> None:
    code = await get_code(db, code_type, code_id)
    await code.delete(using_db=db)
    logger.info("[codes] deleted %s code id=%s", CodeType(code_type).value, code_id)


async def redeem_invite_code(
    db: BaseDBAsyncClient, raw: Optional[str], now: Optional[dt.datetime] = None
) -> InviteCode:
    """
    Consume one use of an invite code. Must run inside the registration transaction.
    The row stays locked until that transaction ends, so concurrent
    registrations cannot both take the last use.

    The code is marked used once its last use is taken, so the admin switch and
    the counters agree afterwards.

    Raises:
        BadRequestError: unknown, disabled, exhausted or expired code
    """
    now = now or utc_now()
    code = await InviteCode.filter(code=normalize_code(raw)).using_db(db).select_for_update().first()
    if not code or not code.is_usable(now):
        raise BadRequestError("Invite code is invalid or no longer usable", code="INVALID_INVITE_CODE")
    code.current_uses += 1
    if code.current_uses >= code.max_uses:
        code.is_used = True
    await code.save(using_db=db, update_fields=["current_uses", "is_used"])
    return code


async def redeem_access_code(
    db: BaseDBAsyncClient, raw: Optional[str], now: Optional[dt.datetime] = None
) -> AccessCode:
    """
    Consume one use of an access code. Must run inside the guest-creation transaction.
    The row stays locked until that transaction ends.

    Raises:
        BadRequestError: unknown, inactive, exhausted or expired code
    """
    now = now or utc_now()
    code = await AccessCode.filter(code=normalize_code(raw)).using_db(db).select_for_update().first()
    if not code or not code.is_usable(now):
        raise BadRequestError("Access code is invalid or no longer usable", code="INVALID_ACCESS_CODE")
    code.current_uses += 1
    await code.save(using_db=db, update_fields=["current_uses"])
    return code
