# app/models/message.py
import uuid
from enum import Enum
from tortoise import fields, models


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class Message(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    conversation = fields.ForeignKeyField(
        "models.Conversation", related_name="messages", on_delete=fields.CASCADE
    )
    user = fields.ForeignKeyField("models.User", related_name="messages", on_delete=fields.CASCADE)

    seq = fields.IntField()  # Position within the conversation, starting at 1
    role = fields.CharEnumField(MessageRole, max_length=16)
    content = fields.TextField()

    # Assistant replies record which model produced them
    provider = fields.ForeignKeyField(
        "models.Provider", related_name="messages", null=True, on_delete=fields.SET_NULL
    )
    model = fields.ForeignKeyField(
        "models.AIModel", related_name="messages", null=True, on_delete=fields.SET_NULL
    )

    prompt_tokens = fields.IntField(null=True)
    completion_tokens = fields.IntField(null=True)
    total_tokens = fields.IntField(null=True)
    is_estimated = fields.BooleanField(default=False)

    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "messages"
        ordering = ["seq"]
