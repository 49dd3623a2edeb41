import uuid
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Query
from tortoise.backends.base.client import BaseDBAsyncClient
from tortoise.transactions import in_transaction

from app.api.v1.deps import get_current_user, get_db
from app.core.errors import BadRequestError, NotFoundError, PermissionDeniedError
from app.models.conversation import Conversation
from app.models.message import Message, MessageRole
from app.models.provider import AIModel, Provider
from app.models.token_usage import TokenUsage
from app.models.user import User
from app.schemas.conversation import (
    AppendMessageIn,
    ConversationModelIn,
    ConversationTitleIn,
    CreateConversationIn,
    EditMessageIn,
)
from app.services.chat_view import message_view, normalize_chat_title
from app.services.quota import (
    ensure_can_chat,
    ensure_host_available,
    get_own_permission,
    model_allowed,
    record_usage,
)

router = APIRouter(prefix="/conversations", tags=["conversations"])


# ===== Helpers =====
def _conversation_to_dict(c: Conversation) -> dict:
    model = c.model if isinstance(c.model, AIModel) else None
    return {
        "id": str(c.id),
        "title": c.title,
        "modelId": model.model_id if model else None,
        "createdAt": c.created_at.isoformat() if c.created_at else None,
        "updatedAt": c.updated_at.isoformat() if c.updated_at else None,
    }


async def _get_conversation(db: BaseDBAsyncClient, user: User, conversation_id: uuid.UUID) -> Conversation:
    conv = await Conversation.get_or_none(id=conversation_id, user_id=user.id, using_db=db)
    if not conv:
        raise NotFoundError("Conversation not found", code="CONVERSATION_NOT_FOUND")
    await conv.fetch_related("model", using_db=db)
    return conv


async def _get_message(db: BaseDBAsyncClient, conv: Conversation, message_id: uuid.UUID) -> Message:
    msg = await Message.get_or_none(id=message_id, conversation_id=conv.id, using_db=db)
    if not msg:
        raise NotFoundError("Message not found", code="MESSAGE_NOT_FOUND")
    return msg


async def _resolve_model(db: BaseDBAsyncClient, user: User, model_id: Optional[str]) -> Optional[AIModel]:
    """Look up an enabled model by its public id and check it against the user's allow-list."""
    if not model_id:
        return None
    model = await AIModel.get_or_none(model_id=model_id, is_enabled=True, using_db=db)
    if not model:
        raise NotFoundError(f"Model {model_id} not found", code="MODEL_NOT_FOUND")
    if not model_allowed(await get_own_permission(db, user), model.model_id):
        raise PermissionDeniedError(f"Model {model.model_id} is not allowed", code="MODEL_NOT_ALLOWED")
    return model


async def _next_seq(db: BaseDBAsyncClient, conv: Conversation) -> int:
    last = await Message.filter(conversation_id=conv.id).using_db(db).order_by("-seq").first()
    return (last.seq if last else 0) + 1


# ===== Conversations =====
@router.get("", response_model=dict)
async def list_conversations(
    user: User = Depends(get_current_user),
    db: BaseDBAsyncClient = Depends(get_db),
    offset: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=200),
):
    """
    Get paginated list of conversations for the authenticated user,
    most recently active first.
    """
    qs = Conversation.filter(user_id=user.id).using_db(db)
    total = await qs.count()
    rows = await qs.order_by("-updated_at").offset(offset).limit(limit).prefetch_related("model")
    items = [_conversation_to_dict(c) for c in rows]
    return {"success": True, "data": {"items": items, "offset": offset, "limit": limit, "total": total}}


@router.post("", response_model=dict)
async def create_conversation(
    body: CreateConversationIn,
    user: User = Depends(get_current_user),
    db: BaseDBAsyncClient = Depends(get_db),
):
    """
    Create a new conversation. The title is optional (untitled chats show as
    "New chat") and is trimmed and cut like any rename.
    """
    model = await _resolve_model(db, user, body.modelId)
    conv = await Conversation.create(
        user=user,
        title=normalize_chat_title(body.title),
        model=model,
        provider_id=model.provider_id if model else None,
        using_db=db,
    )
    return {"success": True, "data": _conversation_to_dict(conv)}


@router.get("/{conversation_id}", response_model=dict)
async def get_conversation(
    conversation_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: BaseDBAsyncClient = Depends(get_db),
):
    """
    Get a conversation with its full message thread.
    """
    conv = await _get_conversation(db, user, conversation_id)
    messages = (
        await Message.filter(conversation_id=conv.id).using_db(db)
        .order_by("seq").prefetch_related("model", "provider")
    )
    data = _conversation_to_dict(conv)
    data["messages"] = [asdict(message_view(m)) for m in messages]
    return {"success": True, "data": data}


@router.patch("/{conversation_id}/title", response_model=dict)
async def rename_conversation(
    conversation_id: uuid.UUID,
    body: ConversationTitleIn,
    user: User = Depends(get_current_user),
    db: BaseDBAsyncClient = Depends(get_db),
):
    """
    Rename a conversation. The title is trimmed and cut to 8 characters;
    a title that is empty after trimming is rejected.
    """
    conv = await _get_conversation(db, user, conversation_id)
    title = normalize_chat_title(body.title)
    if title is None:
        raise BadRequestError("Title must not be empty", code="EMPTY_TITLE")
    conv.title = title
    await conv.save(using_db=db, update_fields=["title", "updated_at"])
    return {"success": True, "data": _conversation_to_dict(conv)}


@router.patch("/{conversation_id}/model", response_model=dict)
async def switch_model(
    conversation_id: uuid.UUID,
    body: ConversationModelIn,
    user: User = Depends(get_current_user),
    db: BaseDBAsyncClient = Depends(get_db),
):
    conv = await _get_conversation(db, user, conversation_id)
    model = await _resolve_model(db, user, body.modelId)
    conv.model = model
    conv.provider_id = model.provider_id
    await conv.save(using_db=db, update_fields=["model_id", "provider_id", "updated_at"])
    return {"success": True, "data": _conversation_to_dict(conv)}


@router.delete("/{conversation_id}", response_model=dict)
async def delete_conversation(
    conversation_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: BaseDBAsyncClient = Depends(get_db),
):
    """
    Delete a conversation and its messages. Usage rows are kept for the
    quota history but lose their link to the conversation.
    """
    conv = await _get_conversation(db, user, conversation_id)
    async with in_transaction(db.connection_name) as tx:
        await TokenUsage.filter(conversation_id=conv.id).using_db(tx).update(conversation_id=None, message_id=None)
        await Message.filter(conversation_id=conv.id).using_db(tx).delete()
        await conv.delete(using_db=tx)
    return {"success": True, "data": {"ok": True}}


# ===== Messages =====
@router.post("/{conversation_id}/messages", response_model=dict)
async def append_message(
    conversation_id: uuid.UUID,
    body: AppendMessageIn,
    user: User = Depends(get_current_user),
    db: BaseDBAsyncClient = Depends(get_db),
):
    """
    Append a message to the thread.

    - user messages pass the model allow-list and quota check before they are stored
    - assistant messages record token usage against the quota owner; when the
      provider reported no usage it is estimated from the prompt and reply text

    Error codes:
        - MODEL_NOT_ALLOWED (403): Model outside the user's allow-list
        - PERMISSION_INACTIVE (403): Chat access disabled
        - HOST_UNAVAILABLE (403): Guest whose host was deleted or deactivated
        - QUOTA_EXCEEDED (429): Quota for the current period used up
    """
    conv = await _get_conversation(db, user, conversation_id)
    model = await _resolve_model(db, user, body.modelId) if body.modelId else conv.model
    provider = await Provider.get_or_none(id=model.provider_id, using_db=db) if model else None

    if body.role == MessageRole.USER:
        await ensure_can_chat(db, user, model)
    else:
        await ensure_host_available(db, user)

    msg = await Message.create(
        conversation=conv,
        user=user,
        seq=await _next_seq(db, conv),
        role=body.role,
        content=body.content,
        model=model,
        provider=provider,
        using_db=db,
    )

    if body.role == MessageRole.ASSISTANT:
        prompt = (
            await Message.filter(conversation_id=conv.id, role=MessageRole.USER, seq__lt=msg.seq)
            .using_db(db).order_by("-seq").first()
        )
        usage_in = body.usage
        usage = await record_usage(
            db,
            user=user,
            model=model,
            conversation=conv,
            message=msg,
            prompt_tokens=usage_in.prompt_tokens if usage_in else None,
            completion_tokens=usage_in.completion_tokens if usage_in else None,
            total_tokens=usage_in.total_tokens if usage_in else None,
            prompt_text=prompt.content if prompt else None,
            completion_text=body.content,
        )
        msg.prompt_tokens = usage.prompt_tokens
        msg.completion_tokens = usage.completion_tokens
        msg.total_tokens = usage.total_tokens
        msg.is_estimated = usage.is_estimated
        await msg.save(
            using_db=db,
            update_fields=["prompt_tokens", "completion_tokens", "total_tokens", "is_estimated"],
        )

    await conv.save(using_db=db, update_fields=["updated_at"])
    return {"success": True, "data": asdict(message_view(msg))}


@router.patch("/{conversation_id}/messages/{message_id}", response_model=dict)
async def edit_message(
    conversation_id: uuid.UUID,
    message_id: uuid.UUID,
    body: EditMessageIn,
    user: User = Depends(get_current_user),
    db: BaseDBAsyncClient = Depends(get_db),
):
    """Edit the text of one of the user's own prompts. Assistant replies cannot be edited."""
    conv = await _get_conversation(db, user, conversation_id)
    msg = await _get_message(db, conv, message_id)
    if MessageRole(msg.role) != MessageRole.USER:
        raise BadRequestError("Only user messages can be edited", code="MESSAGE_NOT_EDITABLE")
    msg.content = body.content
    await msg.save(using_db=db, update_fields=["content"])
    await msg.fetch_related("model", "provider", using_db=db)
    return {"success": True, "data": asdict(message_view(msg))}


@router.delete("/{conversation_id}/messages/{message_id}", response_model=dict)
async def delete_message(
    conversation_id: uuid.UUID,
    message_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: BaseDBAsyncClient = Depends(get_db),
):
    conv = await _get_conversation(db, user, conversation_id)
    msg = await _get_message(db, conv, message_id)
    async with in_transaction(db.connection_name) as tx:
        await TokenUsage.filter(message_id=msg.id).using_db(tx).update(message_id=None)
        await msg.delete(using_db=tx)
    return {"success": True, "data": {"ok": True}}


@router.post("/{conversation_id}/messages/{message_id}/retry", response_model=dict)
async def retry_message(
    conversation_id: uuid.UUID,
    message_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: BaseDBAsyncClient = Depends(get_db),
):
    """
    Drop an assistant reply and everything after it, and hand back the prompt
    that produced it so the client can send it again.

    Usage already recorded for the dropped replies stays charged.
    """
    conv = await _get_conversation(db, user, conversation_id)
    msg = await _get_message(db, conv, message_id)
    if MessageRole(msg.role) != MessageRole.ASSISTANT:
        raise BadRequestError("Only assistant messages can be retried", code="MESSAGE_NOT_RETRYABLE")

    prompt = (
        await Message.filter(conversation_id=conv.id, role=MessageRole.USER, seq__lt=msg.seq)
        .using_db(db).order_by("-seq").first()
    )
    if not prompt:
        raise BadRequestError("No prompt precedes this reply", code="MESSAGE_NOT_RETRYABLE")
    await ensure_can_chat(db, user, conv.model)

    async with in_transaction(db.connection_name) as tx:
        dropped = Message.filter(conversation_id=conv.id, seq__gte=msg.seq).using_db(tx)
        dropped_ids = await dropped.values_list("id", flat=True)
        await TokenUsage.filter(message_id__in=dropped_ids).using_db(tx).update(message_id=None)
        deleted = await dropped.delete()

    return {
        "success": True,
        "data": {
            "promptMessageId": str(prompt.id),
            "prompt": prompt.content,
            "deleted": deleted,
        },
    }
