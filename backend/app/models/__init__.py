# app/models/__init__.py
"""
Database models module initialization.
Exports all database models for convenient imports throughout the application.

Models exported:
- User / UserSettings: accounts, roles and UI preferences
- UserPermission: permission tags, model allow-list and quota counters
- InviteCode / AccessCode: registration invites and guest access grants
- Provider / AIModel: shared AI provider reference data
- Conversation / Message: chat history
- TokenUsage: append-only per-invocation usage ledger
"""
from .user import User, UserRole, UserSettings
from .permission import UserPermission, LimitType, LimitPeriod
from .codes import InviteCode, AccessCode
from .provider import Provider, AIModel
from .conversation import Conversation
from .message import Message, MessageRole
from .token_usage import TokenUsage
