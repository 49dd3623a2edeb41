# app/models/token_usage.py
import uuid
from tortoise import fields, models


class TokenUsage(models.Model):
    """
    Append-only ledger row, one per model invocation.
    is_estimated marks counts computed locally because the provider sent none.
    """
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    user = fields.ForeignKeyField("models.User", related_name="token_usage", on_delete=fields.CASCADE)
    conversation = fields.ForeignKeyField(
        "models.Conversation", related_name="token_usage", null=True, on_delete=fields.SET_NULL
    )
    message = fields.ForeignKeyField(
        "models.Message", related_name="token_usage", null=True, on_delete=fields.SET_NULL
    )
    provider = fields.ForeignKeyField(
        "models.Provider", related_name="token_usage", null=True, on_delete=fields.SET_NULL
    )
    model = fields.ForeignKeyField(
        "models.AIModel", related_name="token_usage", null=True, on_delete=fields.SET_NULL
    )

    prompt_tokens = fields.IntField(default=0)
    completion_tokens = fields.IntField(default=0)
    total_tokens = fields.IntField(default=0)
    is_estimated = fields.BooleanField(default=False)
    cost = fields.DecimalField(max_digits=12, decimal_places=6, null=True)

    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "token_usage"
