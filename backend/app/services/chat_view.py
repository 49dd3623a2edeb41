"""
Chat presentation layer.

Pure view logic for the chat screen: sidebar, message thread with per-message
actions, grouped model picker and the editable chat title. All data and
callbacks are supplied by the caller; the only state kept here is transient
UI state (drawer, menus, title edit in progress).
"""
import datetime as dt
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Iterable, Optional

from ..config import settings
from ..models.message import Message, MessageRole
from ..models.provider import AIModel, Provider

DEFAULT_APP_TITLE = "FimAI Chat"
UNTITLED_CHAT = "New chat"

# Per-message actions
COPY = "copy"
EDIT = "edit"
DELETE = "delete"
RETRY = "retry"


@dataclass
class ChatHistoryItem:
    id: str
    title: str


@dataclass
class ModelOption:
    id: str
    name: str
    group: Optional[str] = None
    provider: Optional[str] = None


@dataclass
class ModelGroupView:
    groupName: str
    models: list[ModelOption]


@dataclass
class ChatMessageView:
    id: str
    role: str
    content: str
    timestamp: Optional[str] = None
    modelInfo: Optional[dict] = None
    tokenUsage: Optional[dict] = None
    actions: list[str] = field(default_factory=list)


def normalize_chat_title(raw: Optional[str], max_length: Optional[int] = None) -> Optional[str]:
    """
    Trim and cut a chat title to `max_length` characters (8 by default).
    Returns None when nothing is left, in which case the title is not saved.
    """
    max_length = max_length or settings.chat_title_max_length
    title = (raw or "").strip()[:max_length]
    return title or None


def sort_groups_by_user_order(group_names: Iterable[str], group_order: Optional[list[dict]]) -> list[str]:
    """
    Order model groups for the picker.

    Groups configured in `group_order` ([{"groupName", "order"}]) come first by
    ascending order; the rest follow alphabetically, with the default group
    last unless it was configured.
    """
    names = list(dict.fromkeys(group_names))
    configured: dict[str, int] = {}
    for entry in group_order or []:
        name = entry.get("groupName")
        if name in names and name not in configured:
            configured[name] = int(entry.get("order", 0))

    ordered = sorted(configured, key=lambda n: (configured[n], n))
    rest = sorted(
        (n for n in names if n not in configured),
        key=lambda n: (n == settings.default_model_group, n.lower()),
    )
    return ordered + rest


def group_models(models: Iterable[ModelOption], group_order: Optional[list[dict]] = None) -> list[ModelGroupView]:
    by_group: dict[str, list[ModelOption]] = {}
    for model in models:
        by_group.setdefault(model.group or settings.default_model_group, []).append(model)
    return [
        ModelGroupView(groupName=name, models=by_group[name])
        for name in sort_groups_by_user_order(by_group, group_order)
    ]


def message_actions(role: str, is_loading: bool = False) -> list[str]:
    """Actions offered on a message bubble; only copy while a reply is loading."""
    if is_loading:
        return [COPY]
    if MessageRole(role) == MessageRole.USER:
        return [COPY, EDIT, DELETE]
    return [COPY, DELETE, RETRY]


def model_option(model: AIModel, provider: Optional[Provider] = None) -> ModelOption:
    return ModelOption(
        id=model.model_id,
        name=model.name,
        group=model.group_name,
        provider=provider.display_name if provider else None,
    )


def message_view(message: Message, is_loading: bool = False) -> ChatMessageView:
    """
    Build a bubble from a Message whose `model` and `provider` relations are fetched (or null).
    """
    role = MessageRole(message.role).value
    model = message.model if isinstance(message.model, AIModel) else None
    provider = message.provider if isinstance(message.provider, Provider) else None

    model_info = None
    if model is not None:
        model_info = {
            "modelId": model.model_id,
            "modelName": model.name,
            "providerId": str(provider.id) if provider else None,
            "providerName": provider.display_name if provider else None,
        }
    token_usage = None
    if message.total_tokens is not None:
        token_usage = {
            "prompt_tokens": message.prompt_tokens,
            "completion_tokens": message.completion_tokens,
            "total_tokens": message.total_tokens,
            "is_estimated": message.is_estimated,
        }
    return ChatMessageView(
        id=str(message.id),
        role=role,
        content=message.content,
        timestamp=message.created_at.isoformat() if isinstance(message.created_at, dt.datetime) else None,
        modelInfo=model_info,
        tokenUsage=token_usage,
        actions=message_actions(role, is_loading),
    )


@dataclass
class ChatCallbacks:
    """Application logic the layout calls back into. Any of them may be missing."""
    on_send: Optional[Callable[[], Any]] = None
    on_new_chat: Optional[Callable[[], Any]] = None
    on_select_chat: Optional[Callable[[str], Any]] = None
    on_delete_chat: Optional[Callable[[str], Any]] = None
    on_model_select: Optional[Callable[[str], Any]] = None
    on_chat_title_change: Optional[Callable[[str], Any]] = None
    on_copy_message: Optional[Callable[[str, str], Any]] = None
    on_edit_message: Optional[Callable[[str, str], Any]] = None
    on_delete_message: Optional[Callable[[str], Any]] = None
    on_retry_message: Optional[Callable[[str], Any]] = None
    on_drawer_toggle: Optional[Callable[[], Any]] = None
    on_settings: Optional[Callable[[], Any]] = None
    on_logout: Optional[Callable[[], Any]] = None


class ChatLayoutState:
    """
    Transient UI state of the chat layout and the event handlers that drive it.
    """

    def __init__(self, callbacks: Optional[ChatCallbacks] = None, chat_title: str = "", drawer_open: bool = False):
        self.callbacks = callbacks or ChatCallbacks()
        self.chat_title = chat_title
        self.drawer_open = drawer_open
        self.user_menu_open = False
        self.model_menu_open = False
        self.is_editing_title = False
        self.editable_title = chat_title

    # -------- drawer / menus --------
    def toggle_drawer(self) -> None:
        self.drawer_open = not self.drawer_open
        if self.callbacks.on_drawer_toggle:
            self.callbacks.on_drawer_toggle()

    def open_user_menu(self) -> None:
        self.user_menu_open = True

    def close_user_menu(self) -> None:
        self.user_menu_open = False

    def open_model_menu(self) -> None:
        self.model_menu_open = True

    def close_model_menu(self) -> None:
        self.model_menu_open = False

    def select_model(self, model_id: str) -> None:
        if self.callbacks.on_model_select:
            self.callbacks.on_model_select(model_id)
            self.close_model_menu()

    def open_settings(self) -> None:
        self.close_user_menu()
        if self.callbacks.on_settings:
            self.callbacks.on_settings()

    def logout(self) -> None:
        self.close_user_menu()
        if self.callbacks.on_logout:
            self.callbacks.on_logout()

    # -------- title editing --------
    def begin_title_edit(self) -> None:
        self.editable_title = self.chat_title
        self.is_editing_title = True

    def change_title(self, text: str) -> None:
        self.editable_title = text

    def save_title(self) -> Optional[str]:
        """Commit the edit; the callback only sees a non-empty, trimmed, 8-char title."""
        title = normalize_chat_title(self.editable_title)
        if title and self.callbacks.on_chat_title_change:
            self.callbacks.on_chat_title_change(title)
            self.chat_title = title
        self.is_editing_title = False
        return title

    def handle_title_key(self, key: str) -> Optional[str]:
        if key == "Enter":
            return self.save_title()
        return None

    def blur_title(self) -> Optional[str]:
        return self.save_title()

    # -------- input box --------
    @staticmethod
    def can_send(text: str, is_loading: bool) -> bool:
        return bool((text or "").strip()) and not is_loading

    def send(self, text: str, is_loading: bool) -> bool:
        if not self.can_send(text, is_loading) or not self.callbacks.on_send:
            return False
        self.callbacks.on_send()
        return True

    def to_dict(self) -> dict:
        return {
            "drawerOpen": self.drawer_open,
            "userMenuOpen": self.user_menu_open,
            "modelMenuOpen": self.model_menu_open,
            "isEditingTitle": self.is_editing_title,
            "editableTitle": self.editable_title,
        }


def render_layout(
    *,
    chat_histories: Iterable[ChatHistoryItem],
    messages: Iterable[ChatMessageView],
    models: Iterable[ModelOption],
    model_groups: Optional[list[dict]] = None,
    current_model_id: Optional[str] = None,
    chat_title: str = "",
    user_name: str = "User",
    is_loading: bool = False,
    title: str = DEFAULT_APP_TITLE,
    state: Optional[ChatLayoutState] = None,
) -> dict:
    """
    Assemble the full chat screen view-model.
    """
    model_list = list(models)
    current = next((m for m in model_list if m.id == current_model_id), None)
    state = state or ChatLayoutState(chat_title=chat_title)
    return {
        "title": title,
        "chatTitle": chat_title,
        "userName": user_name,
        "isLoading": is_loading,
        "sidebar": [
            {"id": h.id, "title": h.title or UNTITLED_CHAT} for h in chat_histories
        ],
        "messages": [asdict(m) for m in messages],
        "modelPicker": {
            "currentModelId": current.id if current else None,
            "modelName": current.name if current else None,
            "providerName": current.provider if current else None,
            "groups": [asdict(g) for g in group_models(model_list, model_groups)],
        },
        "state": state.to_dict(),
    }
