# app/core/permissions.py
"""
Permission tags and the permission check used by every admin endpoint.
"""
import logging
import uuid
from typing import Union

from tortoise.backends.base.client import BaseDBAsyncClient

from app.models.user import User
from app.models.permission import UserPermission

logger = logging.getLogger(__name__)

# Known permission tags. Admins implicitly hold all of them.
CHAT = "chat"
ADMIN_PANEL = "admin_panel"
SHARE_ACCESS = "share_access"
VIEW_USAGE = "view_usage"
PERMISSION_TAGS = frozenset({CHAT, ADMIN_PANEL, SHARE_ACCESS, VIEW_USAGE})


async def check_user_permission(
    db: BaseDBAsyncClient,
    user_id: Union[str, uuid.UUID],
    tag: str,
) -> bool:
    """
    Return True when `user_id` names an active user holding `tag`.

    - Unknown, malformed or inactive users hold nothing
    - Admins hold every tag
    - Everyone else needs an active UserPermission row listing the tag
    """
    try:
        uid = user_id if isinstance(user_id, uuid.UUID) else uuid.UUID(str(user_id))
    except ValueError:
        return False

    user = await User.get_or_none(id=uid, using_db=db)
    if not user or not user.is_active:
        return False
    if user.is_admin:
        return True

    perm = await UserPermission.get_or_none(user_id=uid, using_db=db)
    if not perm or not perm.is_active:
        return False
    granted = tag in (perm.permissions or [])
    if not granted:
        logger.info("[permissions] user=%s lacks tag=%s", uid, tag)
    return granted
