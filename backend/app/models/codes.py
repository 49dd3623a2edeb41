# app/models/codes.py
import uuid
import datetime as dt
from typing import Optional
from tortoise import fields, models

from .permission import split_model_ids


def _expired(expires_at: Optional[dt.datetime], now: dt.datetime) -> bool:
    return bool(expires_at and expires_at <= now)


class InviteCode(models.Model):
    """
    Registration invite.
    - code: plain text code shown to the admin and typed by the invitee
    - max_uses / current_uses: number of accounts the code may still create
    - is_used: admin switch; a used code is never accepted, whatever the counters say
    - expires_at: optional expiry
    """
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    code = fields.CharField(max_length=32, unique=True, index=True)
    created_by: fields.ForeignKeyRelation["User"] = fields.ForeignKeyField(
        "models.User", related_name="invite_codes", on_delete=fields.CASCADE
    )
    max_uses = fields.IntField(default=1)
    current_uses = fields.IntField(default=0)
    is_used = fields.BooleanField(default=False)
    expires_at = fields.DatetimeField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "invite_codes"

    def is_usable(self, now: dt.datetime) -> bool:
        return (
            not self.is_used
            and self.current_uses < self.max_uses
            and not _expired(self.expires_at, now)
        )


class AccessCode(models.Model):
    """
    Guest access grant issued by a host user.
    - allowed_model_ids: comma-delimited allow-list copied onto every guest it creates
    - max_uses: optional cap on the number of guests; null means unlimited
    """
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    code = fields.CharField(max_length=32, unique=True, index=True)
    created_by: fields.ForeignKeyRelation["User"] = fields.ForeignKeyField(
        "models.User", related_name="access_codes", on_delete=fields.CASCADE
    )
    is_active = fields.BooleanField(default=True)
    expires_at = fields.DatetimeField(null=True)
    max_uses = fields.IntField(null=True)
    current_uses = fields.IntField(default=0)
    allowed_model_ids = fields.TextField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "access_codes"

    def is_usable(self, now: dt.datetime) -> bool:
        if not self.is_active or _expired(self.expires_at, now):
            return False
        return self.max_uses is None or self.current_uses < self.max_uses

    def allowed_models(self) -> Optional[list[str]]:
        return split_model_ids(self.allowed_model_ids)
