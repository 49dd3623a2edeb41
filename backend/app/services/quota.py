"""
Quota accounting.

Tracks consumption against a user's configured limit:
1. Period arithmetic (daily / monthly / quarterly / yearly windows)
2. Lazy counter reset once the window since last_reset_at has elapsed
3. Quota and model allow-list enforcement before a model is invoked
4. Append-only usage ledger with token estimation and cost derivation

Guests consume their host's quota; their own permission row only scopes models.
"""
import calendar
import datetime as dt
import logging
import math
from decimal import Decimal
from typing import Optional

from tortoise.backends.base.client import BaseDBAsyncClient
from tortoise.transactions import in_transaction

from ..config import settings
from ..core.errors import PermissionDeniedError, QuotaExceededError
from ..models.conversation import Conversation
from ..models.message import Message
from ..models.permission import LimitPeriod, LimitType, UserPermission
from ..models.provider import AIModel
from ..models.token_usage import TokenUsage
from ..models.user import User, UserRole

logger = logging.getLogger(__name__)

_PERIOD_MONTHS = {
    LimitPeriod.MONTHLY: 1,
    LimitPeriod.QUARTERLY: 3,
    LimitPeriod.YEARLY: 12,
}

_MILLION = Decimal(1_000_000)


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def ensure_aware(value: dt.datetime) -> dt.datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value


def add_months(value: dt.datetime, months: int) -> dt.datetime:
    """Calendar month addition; the day is clamped to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def period_end(last_reset_at: dt.datetime, period: LimitPeriod) -> dt.datetime:
    """End of the quota window that started at `last_reset_at`."""
    start = ensure_aware(last_reset_at)
    period = LimitPeriod(period)
    if period == LimitPeriod.DAILY:
        return start + dt.timedelta(hours=24)
    return add_months(start, _PERIOD_MONTHS[period])


def apply_period_reset(permission: UserPermission, now: Optional[dt.datetime] = None) -> bool:
    """
    Zero the counters if the window has elapsed. Does not save.

    The counters survive until `now` is strictly past the window end.

    Returns:
        True if the counters were reset
    """
    now = ensure_aware(now or utc_now())
    if permission.last_reset_at is None:
        permission.last_reset_at = now
        return False
    if now <= period_end(permission.last_reset_at, permission.limit_period):
        return False
    permission.token_used = 0
    permission.cost_used = Decimal("0")
    permission.last_reset_at = now
    return True


def check_quota(permission: Optional[UserPermission], now: Optional[dt.datetime] = None) -> None:
    """
    Raise if the permission forbids another model invocation.
    Applies the period reset first; callers persist the permission if it changed.
    """
    if permission is None:
        return
    if not permission.is_active:
        raise PermissionDeniedError("Chat access is disabled for this account", code="PERMISSION_INACTIVE")
    apply_period_reset(permission, now)

    limit_type = LimitType(permission.limit_type)
    if limit_type == LimitType.TOKEN and permission.token_limit is not None:
        if permission.token_used >= permission.token_limit:
            raise QuotaExceededError(
                f"Token quota of {permission.token_limit} reached for this {LimitPeriod(permission.limit_period).value} period"
            )
    elif limit_type == LimitType.COST and permission.cost_limit is not None:
        if Decimal(permission.cost_used) >= Decimal(permission.cost_limit):
            raise QuotaExceededError(
                f"Cost quota of {permission.cost_limit} reached for this {LimitPeriod(permission.limit_period).value} period"
            )


def model_allowed(permission: Optional[UserPermission], model_id: str) -> bool:
    """An empty or missing allow-list permits every model."""
    if permission is None:
        return True
    allowed = permission.allowed_models()
    return allowed is None or model_id in allowed


def estimate_tokens(text: Optional[str]) -> int:
    """
    Rough token count for text whose usage the provider did not report.
    """
    if not text:
        return 0
    return max(1, math.ceil(len(text) / settings.chars_per_token))


def compute_cost(model: Optional[AIModel], prompt_tokens: int, completion_tokens: int) -> Optional[Decimal]:
    """Cost from per-million-token prices; None when the model has no price."""
    if model is None or (model.input_price is None and model.output_price is None):
        return None
    input_price = Decimal(model.input_price or 0)
    output_price = Decimal(model.output_price or 0)
    return (Decimal(prompt_tokens) * input_price + Decimal(completion_tokens) * output_price) / _MILLION


async def get_own_permission(db: BaseDBAsyncClient, user: User) -> Optional[UserPermission]:
    return await UserPermission.get_or_none(user_id=user.id, using_db=db)


async def get_quota_permission(
    db: BaseDBAsyncClient, user: User, for_update: bool = False
) -> Optional[UserPermission]:
    """
    The permission whose counters a user's usage is charged to (the host's for guests).

    `for_update` locks the row until the surrounding transaction ends.
    """
    owner_id = user.host_user_id if user.role == UserRole.GUEST and user.host_user_id else user.id
    query = UserPermission.filter(user_id=owner_id).using_db(db)
    if for_update:
        query = query.select_for_update()
    return await query.first()


async def ensure_host_available(db: BaseDBAsyncClient, user: User) -> None:
    """
    A guest can only chat while its host account exists and is active.

    Raises:
        PermissionDeniedError: the guest's host was deleted or deactivated
    """
    if user.role != UserRole.GUEST:
        return
    host_active = user.host_user_id is not None and await User.filter(
        id=user.host_user_id, is_active=True
    ).using_db(db).exists()
    if not host_active:
        raise PermissionDeniedError("The account that invited you is no longer available", code="HOST_UNAVAILABLE")


async def ensure_can_chat(db: BaseDBAsyncClient, user: User, model: Optional[AIModel]) -> None:
    """
    Gate a model invocation: model allow-list first, then the quota owner's limit.

    Raises:
        PermissionDeniedError: model outside the allow-list, permission disabled,
            or a guest whose host is gone
        QuotaExceededError: the quota for the current period is used up
    """
    await ensure_host_available(db, user)
    own = await get_own_permission(db, user)
    if own is not None and not own.is_active:
        raise PermissionDeniedError("Chat access is disabled for this account", code="PERMISSION_INACTIVE")
    if model is not None and not model_allowed(own, model.model_id):
        raise PermissionDeniedError(f"Model {model.model_id} is not allowed", code="MODEL_NOT_ALLOWED")

    owner = own if user.role != UserRole.GUEST else await get_quota_permission(db, user)
    if owner is None:
        return
    before = owner.last_reset_at
    try:
        check_quota(owner)
    finally:
        if owner.last_reset_at != before:
            await owner.save(using_db=db, update_fields=["token_used", "cost_used", "last_reset_at"])
            logger.info("[quota] period reset for permission user=%s", owner.user_id)


async def record_usage(
    db: BaseDBAsyncClient,
    *,
    user: User,
    model: Optional[AIModel] = None,
    conversation: Optional[Conversation] = None,
    message: Optional[Message] = None,
    prompt_tokens: Optional[int] = None,
    completion_tokens: Optional[int] = None,
    total_tokens: Optional[int] = None,
    prompt_text: Optional[str] = None,
    completion_text: Optional[str] = None,
) -> TokenUsage:
    """
    Append a usage row and charge it to the quota owner's counters.

    If the provider reported no usage at all, counts are estimated from the
    prompt and completion text and the row is flagged `is_estimated`.
    """
    is_estimated = prompt_tokens is None and completion_tokens is None and total_tokens is None
    if is_estimated:
        prompt_tokens = estimate_tokens(prompt_text)
        completion_tokens = estimate_tokens(completion_text)
    prompt_tokens = prompt_tokens or 0
    completion_tokens = completion_tokens or 0
    if total_tokens is None:
        total_tokens = prompt_tokens + completion_tokens
    cost = compute_cost(model, prompt_tokens, completion_tokens)

    async with in_transaction(db.connection_name) as tx:
        usage = await TokenUsage.create(
            user=user,
            conversation=conversation,
            message=message,
            provider_id=model.provider_id if model else None,
            model=model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
            is_estimated=is_estimated,
            cost=cost,
            using_db=tx,
        )

        owner = await get_quota_permission(tx, user, for_update=True)
        if owner is not None:
            apply_period_reset(owner)
            owner.token_used = (owner.token_used or 0) + total_tokens
            if cost is not None:
                owner.cost_used = Decimal(owner.cost_used or 0) + cost
            await owner.save(using_db=tx, update_fields=["token_used", "cost_used", "last_reset_at"])

    logger.info(
        "[quota] usage user=%s model=%s total=%s estimated=%s",
        user.id, model.model_id if model else None, total_tokens, is_estimated,
    )
    return usage


async def visible_models(db: BaseDBAsyncClient, user: User) -> list[AIModel]:
    """Enabled models of enabled providers that the user's allow-list permits, in picker order."""
    own = await get_own_permission(db, user)
    rows = (
        await AIModel.filter(is_enabled=True, provider__is_enabled=True)
        .using_db(db)
        .order_by("provider__sort_order", "sort_order", "name")
        .prefetch_related("provider")
    )
    return [m for m in rows if model_allowed(own, m.model_id)]
