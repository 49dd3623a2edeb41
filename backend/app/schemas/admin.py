"""
Pydantic schemas for admin endpoints.
Defines request models for user management, code management and the database
reset. Every request names the calling admin through `adminUserId`; the
`action` / `type` discriminators are tagged unions so unknown variants are
rejected during validation.
"""
import datetime as dt
import uuid
from decimal import Decimal
from typing import Annotated, Literal, Optional, Union

from pydantic import AfterValidator, BaseModel, Field, RootModel

from app.models.permission import LimitPeriod, LimitType
from app.models.user import UserRole
from app.services.code_admin import CodeType


def _as_utc(value: Optional[dt.datetime]) -> Optional[dt.datetime]:
    """Naive timestamps from the client are taken as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value


UtcDatetime = Annotated[dt.datetime, AfterValidator(_as_utc)]


class AdminRequest(BaseModel):
    adminUserId: uuid.UUID  # Caller; must hold the admin_panel permission


# ========== Users ==========
class AdminUserCreateIn(AdminRequest):
    username: str = Field(min_length=1, max_length=256)
    password: str = Field(min_length=1)
    email: Optional[str] = None
    role: UserRole = UserRole.USER


class UpdateStatusIn(AdminRequest):
    action: Literal["updateStatus"]
    userId: uuid.UUID
    isActive: bool


class UpdateAccessCodePermissionIn(AdminRequest):
    action: Literal["updateAccessCodePermission"]
    userId: uuid.UUID
    canShareAccessCode: bool


class UpdatePermissionsIn(AdminRequest):
    """
    Arbitrary permission/quota changes; only fields that are sent are applied.
    """
    action: Literal["updatePermissions"]
    userId: uuid.UUID
    permissions: Optional[list[str]] = None
    allowedModelIds: Optional[list[str]] = None  # null / [] means every model
    limitType: Optional[LimitType] = None
    limitPeriod: Optional[LimitPeriod] = None
    tokenLimit: Optional[int] = Field(default=None, ge=0)
    costLimit: Optional[Decimal] = Field(default=None, ge=0)
    canShareAccess: Optional[bool] = None
    isActive: Optional[bool] = None
    resetUsage: bool = False

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True, exclude={"action", "adminUserId", "userId"})


class AdminUserUpdateIn(RootModel[Annotated[
    Union[UpdateStatusIn, UpdateAccessCodePermissionIn, UpdatePermissionsIn],
    Field(discriminator="action"),
]]):
    """PATCH body; `action` picks the variant, unknown actions fail validation."""


class AdminUserDeleteIn(AdminRequest):
    userId: uuid.UUID


# ========== Codes ==========
class InviteCodeCreateIn(AdminRequest):
    type: Literal["invite"]
    maxUses: int = Field(default=1, ge=1)
    expiresAt: Optional[UtcDatetime] = None


class AccessCodeCreateIn(AdminRequest):
    type: Literal["access"]
    maxUses: Optional[int] = Field(default=None, ge=1)
    expiresAt: Optional[UtcDatetime] = None
    allowedModelIds: Optional[list[str]] = None


class CodeCreateIn(RootModel[Annotated[
    Union[InviteCodeCreateIn, AccessCodeCreateIn],
    Field(discriminator="type"),
]]):
    """POST body; `type` picks invite or access."""


class CodeToggleIn(AdminRequest):
    codeId: uuid.UUID
    type: CodeType
    action: Literal["toggle"]


class CodeDeleteIn(AdminRequest):
    codeId: uuid.UUID
    type: CodeType


# ========== Database reset ==========
class DatabaseResetIn(AdminRequest):
    confirmText: Optional[str] = None  # Must be exactly "RESET DATABASE"
