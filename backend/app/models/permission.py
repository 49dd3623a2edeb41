# app/models/permission.py
"""
Per-user permission and quota record (one-to-one with User).
"""
from decimal import Decimal
from enum import Enum
from typing import Optional

from tortoise import fields, models


class LimitType(str, Enum):
    NONE = "none"
    TOKEN = "token"
    COST = "cost"


class LimitPeriod(str, Enum):
    DAILY = "daily"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


def default_permission_tags() -> list:
    return ["chat"]


class UserPermission(models.Model):
    """
    Permission tags, model allow-list and quota counters for one user.

    - allowed_model_ids: comma-delimited Model.model_id values; null means every model
    - limit_type picks which counter is enforced; token and cost limits are exclusive
    - token_used / cost_used are zeroed lazily once the limit period has elapsed
      since last_reset_at (see app.services.quota)
    """
    id = fields.IntField(pk=True)
    user: fields.OneToOneRelation["User"] = fields.OneToOneField(
        "models.User", related_name="permission", on_delete=fields.CASCADE
    )
    permissions = fields.JSONField(default=default_permission_tags)
    allowed_model_ids = fields.TextField(null=True)
    can_share_access = fields.BooleanField(default=True)
    is_active = fields.BooleanField(default=True)

    limit_type = fields.CharEnumField(LimitType, max_length=8, default=LimitType.NONE)
    limit_period = fields.CharEnumField(LimitPeriod, max_length=16, default=LimitPeriod.MONTHLY)
    token_limit = fields.BigIntField(null=True)
    cost_limit = fields.DecimalField(max_digits=14, decimal_places=6, null=True)
    token_used = fields.BigIntField(default=0)
    cost_used = fields.DecimalField(max_digits=14, decimal_places=6, default=Decimal("0"))
    last_reset_at = fields.DatetimeField(auto_now_add=True)

    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "user_permissions"

    def allowed_models(self) -> Optional[list[str]]:
        return split_model_ids(self.allowed_model_ids)


def split_model_ids(raw: Optional[str]) -> Optional[list[str]]:
    """Parse a comma-delimited allow-list; None/blank means unrestricted."""
    if not raw:
        return None
    ids = [part.strip() for part in raw.split(",") if part.strip()]
    return ids or None


def join_model_ids(ids: Optional[list[str]]) -> Optional[str]:
    if not ids:
        return None
    cleaned = []
    for model_id in ids:
        model_id = model_id.strip()
        if model_id and model_id not in cleaned:
            cleaned.append(model_id)
    return ",".join(cleaned) or None
