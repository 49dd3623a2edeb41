# app/models/user.py
"""
Database models for users and their UI preferences.
Represents a user account in the system, containing authentication credentials,
role, activation state and (for guests) the host account they belong to.
"""
import uuid
from enum import Enum
from tortoise import fields, models


class UserRole(str, Enum):
    ADMIN = "admin"
    USER = "user"
    GUEST = "guest"


class User(models.Model):
    """
    User database model.

    Relationships:
    - Has many Conversations, Messages and TokenUsage rows
    - Has one UserSettings and (non-admins) one UserPermission
    - Has many InviteCodes / AccessCodes it created
    - Guests point at their host user; hosts see them as `guests`

    Security:
    - Password is stored as a hash (never store plain text passwords)
    - Username must be unique across all users
    """
    id = fields.UUIDField(pk=True, default=uuid.uuid4)  # Primary key: unique user identifier
    username = fields.CharField(max_length=256, unique=True, index=True)  # Login name
    email = fields.CharField(max_length=256, null=True)  # Optional email address
    password_hash = fields.CharField(max_length=255)  # Hashed password (argon2, never plain text)
    role = fields.CharEnumField(UserRole, max_length=16, default=UserRole.USER)
    is_active = fields.BooleanField(default=True)  # Soft-disable flag; inactive users cannot log in

    # Guests only: the account whose quota and model scope they share
    host_user: fields.ForeignKeyNullableRelation["User"] = fields.ForeignKeyField(
        "models.User", related_name="guests", null=True, on_delete=fields.SET_NULL
    )
    # Provenance: the code string the account was created with
    invite_code = fields.CharField(max_length=32, null=True)
    access_code = fields.CharField(max_length=32, null=True)

    created_at = fields.DatetimeField(auto_now_add=True)
    last_login_at = fields.DatetimeField(null=True)

    class Meta:
        """Tortoise ORM metadata configuration."""
        table = "users"

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def default_model_group_order() -> list:
    return []


class UserSettings(models.Model):
    id = fields.IntField(pk=True)
    user: fields.OneToOneRelation[User] = fields.OneToOneField(
        "models.User", related_name="settings", on_delete=fields.CASCADE
    )
    theme = fields.CharField(max_length=16, default="light")
    language = fields.CharField(max_length=16, default="zh-CN")
    enable_markdown = fields.BooleanField(default=True)
    enable_latex = fields.BooleanField(default=True)
    enable_code_highlight = fields.BooleanField(default=True)
    message_page_size = fields.IntField(default=50)
    # [{"groupName": "OpenAI", "order": 0}, ...] drives the model picker group order
    model_group_order = fields.JSONField(default=default_model_group_order)

    class Meta:
        table = "user_settings"
