# app/models/provider.py
"""
Shared, read-mostly reference data: AI providers and the models they serve.
"""
import uuid
from tortoise import fields, models


class Provider(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    name = fields.CharField(max_length=64, unique=True)  # Stable key, e.g. "openai"
    display_name = fields.CharField(max_length=128)
    base_url = fields.CharField(max_length=512, null=True)
    is_enabled = fields.BooleanField(default=True)
    sort_order = fields.IntField(default=0)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "providers"


class AIModel(models.Model):
    """
    A model offered by a provider.
    Prices are per million tokens; null means the cost of a call is unknown.
    """
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    provider: fields.ForeignKeyRelation[Provider] = fields.ForeignKeyField(
        "models.Provider", related_name="ai_models", on_delete=fields.CASCADE
    )
    model_id = fields.CharField(max_length=128, unique=True, index=True)  # e.g. "gpt-4o-mini"
    name = fields.CharField(max_length=128)
    group_name = fields.CharField(max_length=64, null=True)  # Model picker group
    input_price = fields.DecimalField(max_digits=12, decimal_places=4, null=True)
    output_price = fields.DecimalField(max_digits=12, decimal_places=4, null=True)
    is_enabled = fields.BooleanField(default=True)
    sort_order = fields.IntField(default=0)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "models"
