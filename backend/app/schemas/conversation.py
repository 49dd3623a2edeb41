# app/schemas/conversation.py
"""
Pydantic schemas for the chat endpoints.
Defines request models for conversations, messages, model group ordering
and user-issued access codes.
"""
from typing import Optional

from pydantic import BaseModel, Field

from app.models.message import MessageRole
from app.schemas.admin import UtcDatetime


class CreateConversationIn(BaseModel):
    title: Optional[str] = None
    modelId: Optional[str] = None  # AIModel.model_id picked in the model picker


class ConversationTitleIn(BaseModel):
    """
    Request model for renaming a conversation.
    The title is trimmed and cut to 8 characters before it is saved.
    """
    title: str


class ConversationModelIn(BaseModel):
    modelId: str


class TokenUsageIn(BaseModel):
    """
    Usage as reported by the provider. Leave it out entirely when the provider
    sent none; the server then estimates it and flags the message.
    """
    prompt_tokens: Optional[int] = Field(default=None, ge=0)
    completion_tokens: Optional[int] = Field(default=None, ge=0)
    total_tokens: Optional[int] = Field(default=None, ge=0)


class AppendMessageIn(BaseModel):
    role: MessageRole
    content: str = Field(min_length=1)
    modelId: Optional[str] = None  # Defaults to the conversation's model
    usage: Optional[TokenUsageIn] = None  # Assistant messages only


class EditMessageIn(BaseModel):
    content: str = Field(min_length=1)


class ModelGroupOrderItem(BaseModel):
    groupName: str
    order: int


class ModelGroupOrderIn(BaseModel):
    groups: list[ModelGroupOrderItem]


class ShareAccessCodeIn(BaseModel):
    """
    Access code issued by a regular user for their guests.
    allowedModelIds must stay within the issuer's own allow-list.
    """
    maxUses: Optional[int] = Field(default=None, ge=1)
    expiresAt: Optional[UtcDatetime] = None
    allowedModelIds: Optional[list[str]] = None
