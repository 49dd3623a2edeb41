import uuid
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Query
from tortoise.backends.base.client import BaseDBAsyncClient

from app.api.v1.deps import get_current_user, get_db
from app.core.errors import NotFoundError
from app.models.conversation import Conversation
from app.models.message import Message
from app.models.user import User, UserSettings
from app.schemas.conversation import ModelGroupOrderIn
from app.services.chat_view import (
    ChatHistoryItem,
    ChatLayoutState,
    group_models,
    message_view,
    model_option,
    render_layout,
)
from app.services.quota import visible_models

router = APIRouter(tags=["chat"])


async def _settings_for(db: BaseDBAsyncClient, user: User) -> UserSettings:
    user_settings = await UserSettings.get_or_none(user_id=user.id, using_db=db)
    if user_settings is None:
        user_settings = await UserSettings.create(user=user, using_db=db)
    return user_settings


@router.get("/chat/layout", response_model=dict)
async def chat_layout(
    conversationId: Optional[uuid.UUID] = Query(default=None),
    isLoading: bool = Query(default=False),
    drawerOpen: bool = Query(default=False),
    user: User = Depends(get_current_user),
    db: BaseDBAsyncClient = Depends(get_db),
):
    """
    Render the chat screen view-model: sidebar, message thread with actions,
    grouped model picker and the transient UI state.

    Without `conversationId` the thread is empty (a new chat).
    """
    histories = await Conversation.filter(user_id=user.id).using_db(db).order_by("-updated_at")
    options = [model_option(m, m.provider) for m in await visible_models(db, user)]
    user_settings = await _settings_for(db, user)

    conv = None
    messages = []
    if conversationId is not None:
        conv = await Conversation.get_or_none(id=conversationId, user_id=user.id, using_db=db)
        if not conv:
            raise NotFoundError("Conversation not found", code="CONVERSATION_NOT_FOUND")
        await conv.fetch_related("model", using_db=db)
        rows = (
            await Message.filter(conversation_id=conv.id).using_db(db)
            .order_by("seq").prefetch_related("model", "provider")
        )
        messages = [message_view(m, is_loading=isLoading) for m in rows]

    chat_title = (conv.title or "") if conv else ""
    layout = render_layout(
        chat_histories=[ChatHistoryItem(id=str(c.id), title=c.title or "") for c in histories],
        messages=messages,
        models=options,
        model_groups=user_settings.model_group_order,
        current_model_id=conv.model.model_id if conv and conv.model else None,
        chat_title=chat_title,
        user_name=user.username,
        is_loading=isLoading,
        state=ChatLayoutState(chat_title=chat_title, drawer_open=drawerOpen),
    )
    return {"success": True, "data": layout}


@router.get("/models", response_model=dict)
async def list_models(
    user: User = Depends(get_current_user),
    db: BaseDBAsyncClient = Depends(get_db),
):
    """
    Models the current user may pick, flat and grouped in the user's group order.
    """
    options = [model_option(m, m.provider) for m in await visible_models(db, user)]
    user_settings = await _settings_for(db, user)
    groups = group_models(options, user_settings.model_group_order)
    return {
        "success": True,
        "data": {
            "items": [asdict(o) for o in options],
            "groups": [asdict(g) for g in groups],
        },
    }


@router.get("/settings/model-groups", response_model=dict)
async def get_model_group_order(
    user: User = Depends(get_current_user),
    db: BaseDBAsyncClient = Depends(get_db),
):
    user_settings = await _settings_for(db, user)
    return {"success": True, "data": {"groups": user_settings.model_group_order or []}}


@router.put("/settings/model-groups", response_model=dict)
async def save_model_group_order(
    body: ModelGroupOrderIn,
    user: User = Depends(get_current_user),
    db: BaseDBAsyncClient = Depends(get_db),
):
    """
    Store the model picker group order. Groups left out fall back to
    alphabetical order after the configured ones.
    """
    user_settings = await _settings_for(db, user)
    user_settings.model_group_order = [g.model_dump() for g in sorted(body.groups, key=lambda g: g.order)]
    await user_settings.save(using_db=db, update_fields=["model_group_order"])
    return {"success": True, "data": {"groups": user_settings.model_group_order}}
