"""
User management service behind /api/admin/users.

Every function takes the persistence handle explicitly; multi-row mutations
run inside one transaction so they either fully apply or leave nothing behind.
"""
import datetime as dt
import logging
import uuid
from decimal import Decimal
from typing import Any, Optional

from tortoise.backends.base.client import BaseDBAsyncClient
from tortoise.functions import Count, Sum
from tortoise.transactions import in_transaction

from ..core.errors import BadRequestError, NotFoundError, SelfActionError
from ..core.permissions import CHAT, PERMISSION_TAGS
from ..core.security import hash_password
from ..models.codes import AccessCode, InviteCode
from ..models.conversation import Conversation
from ..models.message import Message
from ..models.permission import LimitPeriod, LimitType, UserPermission, join_model_ids
from ..models.token_usage import TokenUsage
from ..models.user import User, UserRole, UserSettings

logger = logging.getLogger(__name__)

# Rows owned by a user, deleted in this order before the user row itself.
# (model, owner field)
CASCADE_STEPS = [
    (TokenUsage, "user_id"),
    (Message, "user_id"),
    (Conversation, "user_id"),
    (UserPermission, "user_id"),
    (UserSettings, "user_id"),
    (InviteCode, "created_by_id"),
    (AccessCode, "created_by_id"),
]


def _iso(value: Optional[dt.datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def permission_to_dict(p: UserPermission) -> dict:
    return {
        "permissions": list(p.permissions or []),
        "allowedModelIds": p.allowed_models(),
        "canShareAccess": p.can_share_access,
        "isActive": p.is_active,
        "limitType": LimitType(p.limit_type).value,
        "limitPeriod": LimitPeriod(p.limit_period).value,
        "tokenLimit": p.token_limit,
        "costLimit": str(p.cost_limit) if p.cost_limit is not None else None,
        "tokenUsed": p.token_used,
        "costUsed": str(p.cost_used) if p.cost_used is not None else "0",
        "lastResetAt": _iso(p.last_reset_at),
    }


def user_to_dict(
    u: User,
    permission: Optional[UserPermission] = None,
    stats: Optional[dict] = None,
) -> dict:
    """
    Convert a User into the admin projection (never includes the password hash).
    """
    data = {
        "id": str(u.id),
        "username": u.username,
        "email": u.email,
        "role": UserRole(u.role).value,
        "isActive": u.is_active,
        "hostUserId": str(u.host_user_id) if u.host_user_id else None,
        "inviteCode": u.invite_code,
        "accessCode": u.access_code,
        "createdAt": _iso(u.created_at),
        "lastLoginAt": _iso(u.last_login_at),
        "permission": permission_to_dict(permission) if permission else None,
    }
    if stats is not None:
        data["stats"] = stats
    return data


async def _get_user(db: BaseDBAsyncClient, user_id: uuid.UUID) -> User:
    user = await User.get_or_none(id=user_id, using_db=db)
    if not user:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")
    return user


async def _collect_stats(db: BaseDBAsyncClient, user_ids: list[uuid.UUID]) -> dict[str, dict]:
    stats = {str(uid): {"conversationCount": 0, "messageCount": 0, "totalTokens": 0} for uid in user_ids}
    if not user_ids:
        return stats

    conv_rows = (
        await Conversation.filter(user_id__in=user_ids).using_db(db)
        .annotate(n=Count("id")).group_by("user_id").values("user_id", "n")
    )
    for row in conv_rows:
        stats[str(row["user_id"])]["conversationCount"] = row["n"]

    msg_rows = (
        await Message.filter(user_id__in=user_ids).using_db(db)
        .annotate(n=Count("id")).group_by("user_id").values("user_id", "n")
    )
    for row in msg_rows:
        stats[str(row["user_id"])]["messageCount"] = row["n"]

    usage_rows = (
        await TokenUsage.filter(user_id__in=user_ids).using_db(db)
        .annotate(total=Sum("total_tokens")).group_by("user_id").values("user_id", "total")
    )
    for row in usage_rows:
        stats[str(row["user_id"])]["totalTokens"] = int(row["total"] or 0)
    return stats


async def list_users(
    db: BaseDBAsyncClient,
    *,
    role: Optional[UserRole] = None,
    is_active: Optional[bool] = None,
    limit: int = 50,
    offset: int = 0,
    include_stats: bool = False,
) -> dict:
    """
    Page through users, newest first, optionally with aggregated stats.
    """
    qs = User.all(using_db=db).order_by("-created_at")
    if role is not None:
        qs = qs.filter(role=role)
    if is_active is not None:
        qs = qs.filter(is_active=is_active)

    total = await qs.count()
    rows = await qs.offset(offset).limit(limit)
    ids = [u.id for u in rows]

    perms = {
        str(p.user_id): p
        for p in await UserPermission.filter(user_id__in=ids).using_db(db)
    } if ids else {}
    stats = await _collect_stats(db, ids) if include_stats else {}

    items = [
        user_to_dict(u, perms.get(str(u.id)), stats.get(str(u.id)) if include_stats else None)
        for u in rows
    ]
    return {"items": items, "total": total, "limit": limit, "offset": offset}


async def create_user(
    db: BaseDBAsyncClient,
    *,
    username: str,
    password: str,
    email: Optional[str] = None,
    role: UserRole = UserRole.USER,
    host_user_id: Optional[uuid.UUID] = None,
    invite_code: Optional[str] = None,
    access_code: Optional[str] = None,
    allowed_model_ids: Optional[str] = None,
    using_tx: Optional[BaseDBAsyncClient] = None,
) -> tuple[User, Optional[UserPermission]]:
    """
    Create a user with default settings and, for non-admins, an unrestricted permission row.

    Args:
        using_tx: run inside a caller's transaction instead of opening a new one

    Raises:
        BadRequestError: username (case-insensitive) or email already taken
    """
    username = (username or "").strip()
    email = (email or "").strip() or None
    if not username or not password:
        raise BadRequestError("username and password are required")

    async def _create(tx: BaseDBAsyncClient) -> tuple[User, Optional[UserPermission]]:
        taken = await User.filter(username__iexact=username).using_db(tx).exists()
        if not taken and email:
            taken = await User.filter(email=email).using_db(tx).exists()
        if taken:
            raise BadRequestError("Username or email already exists", code="USER_EXISTS")

        user = await User.create(
            username=username,
            email=email,
            password_hash=hash_password(password),
            role=role,
            is_active=True,
            host_user_id=host_user_id,
            invite_code=invite_code,
            access_code=access_code,
            using_db=tx,
        )
        await UserSettings.create(user=user, using_db=tx)

        permission = None
        if role != UserRole.ADMIN:
            permission = await UserPermission.create(
                user=user,
                permissions=[CHAT],
                allowed_model_ids=allowed_model_ids,
                can_share_access=role == UserRole.USER,
                is_active=True,
                limit_type=LimitType.NONE,
                using_db=tx,
            )
        return user, permission

    if using_tx is not None:
        return await _create(using_tx)
    async with in_transaction(db.connection_name) as tx:
        result = await _create(tx)
    logger.info("[admin] created user id=%s username=%s role=%s", result[0].id, username, role)
    return result


async def update_status(
    db: BaseDBAsyncClient, admin_user_id: uuid.UUID, user_id: uuid.UUID, is_active: bool
) -> User:
    if admin_user_id == user_id and not is_active:
        raise SelfActionError("Cannot ban your own account")
    user = await _get_user(db, user_id)
    user.is_active = is_active
    await user.save(using_db=db, update_fields=["is_active"])
    logger.info("[admin] user=%s is_active=%s by admin=%s", user_id, is_active, admin_user_id)
    return user


async def _get_or_create_permission(db: BaseDBAsyncClient, user: User) -> UserPermission:
    permission = await UserPermission.get_or_none(user_id=user.id, using_db=db)
    if permission is None:
        permission = await UserPermission.create(user=user, using_db=db)
    return permission


async def update_access_code_permission(
    db: BaseDBAsyncClient, user_id: uuid.UUID, can_share: bool
) -> tuple[User, UserPermission]:
    user = await _get_user(db, user_id)
    permission = await _get_or_create_permission(db, user)
    permission.can_share_access = can_share
    await permission.save(using_db=db)
    return user, permission


async def update_permissions(
    db: BaseDBAsyncClient, user_id: uuid.UUID, changes: dict[str, Any]
) -> tuple[User, UserPermission]:
    """
    Apply arbitrary permission/quota changes.

    `changes` uses the request's camelCase keys and only contains fields the
    caller actually sent. Token and cost limits are exclusive: switching the
    limit type clears the other limit.
    """
    user = await _get_user(db, user_id)

    if "permissions" in changes:
        tags = changes["permissions"] or []
        unknown = sorted(set(tags) - PERMISSION_TAGS)
        if unknown:
            raise BadRequestError(f"Unknown permission tags: {', '.join(unknown)}", code="INVALID_PERMISSION")

    async with in_transaction(db.connection_name) as tx:
        permission = await _get_or_create_permission(tx, user)

        if "permissions" in changes:
            permission.permissions = list(dict.fromkeys(changes["permissions"] or []))
        if "allowedModelIds" in changes:
            permission.allowed_model_ids = join_model_ids(changes["allowedModelIds"])
        if "canShareAccess" in changes:
            permission.can_share_access = bool(changes["canShareAccess"])
        if "isActive" in changes:
            permission.is_active = bool(changes["isActive"])
        if "limitPeriod" in changes and changes["limitPeriod"] is not None:
            permission.limit_period = LimitPeriod(changes["limitPeriod"])
        if "tokenLimit" in changes:
            permission.token_limit = changes["tokenLimit"]
        if "costLimit" in changes:
            cost_limit = changes["costLimit"]
            permission.cost_limit = Decimal(str(cost_limit)) if cost_limit is not None else None
        if "limitType" in changes and changes["limitType"] is not None:
            permission.limit_type = LimitType(changes["limitType"])

        limit_type = LimitType(permission.limit_type)
        if limit_type == LimitType.TOKEN:
            if permission.token_limit is None:
                raise BadRequestError("tokenLimit is required when limitType is token")
            permission.cost_limit = None
        elif limit_type == LimitType.COST:
            if permission.cost_limit is None:
                raise BadRequestError("costLimit is required when limitType is cost")
            permission.token_limit = None

        if changes.get("resetUsage"):
            permission.token_used = 0
            permission.cost_used = Decimal("0")
            permission.last_reset_at = dt.datetime.now(dt.timezone.utc)

        await permission.save(using_db=tx)

    logger.info("[admin] updated permissions user=%s fields=%s", user_id, sorted(changes))
    return user, permission


async def delete_user(db: BaseDBAsyncClient, admin_user_id: uuid.UUID, user_id: uuid.UUID) -> None:
    """
    Hard-delete a user and everything it owns, all-or-nothing.

    Guests hosted by the user are kept but lose their host link and are
    deactivated; they have no quota left to draw on.

    Raises:
        SelfActionError: an admin deleting their own account
        NotFoundError: no such user
    """
    if admin_user_id == user_id:
        raise SelfActionError("Cannot delete your own account")
    user = await _get_user(db, user_id)

    async with in_transaction(db.connection_name) as tx:
        for model_cls, owner_field in CASCADE_STEPS:
            await model_cls.filter(**{owner_field: user.id}).using_db(tx).delete()
        await User.filter(host_user_id=user.id).using_db(tx).update(host_user_id=None, is_active=False)
        await user.delete(using_db=tx)

    logger.warning("[admin] deleted user id=%s username=%s by admin=%s", user_id, user.username, admin_user_id)
