# app/models/conversation.py
"""
Database model for conversations.
Represents a single chat session between a user and a model,
linking to the messages exchanged in it.
"""
import uuid
from tortoise import fields, models


class Conversation(models.Model):
    """
    Conversation database model.

    Relationships:
    - Belongs to a User (many-to-one)
    - Uses a Provider + Model pair (the last model picked for it)
    - Has many Messages (one-to-many, via related_name in Message model)
    """
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    user = fields.ForeignKeyField(
        "models.User",
        related_name="conversations",
        on_delete=fields.CASCADE
    )
    title = fields.CharField(max_length=128, null=True)  # Short user-edited title
    provider = fields.ForeignKeyField(
        "models.Provider", related_name="conversations", null=True, on_delete=fields.SET_NULL
    )
    model = fields.ForeignKeyField(
        "models.AIModel", related_name="conversations", null=True, on_delete=fields.SET_NULL
    )
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        """Tortoise ORM metadata configuration."""
        table = "conversations"
