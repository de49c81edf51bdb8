"""
Core data models for the relay bot.

Telegram update payloads are parsed into a small subset of the Bot API types;
unknown fields are kept (``extra="allow"``) so nothing the gateway sends is
lost, but only the fields the router reads are typed.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# ──────────────────────────────────────────────────────────────
#  Telegram update types
# ──────────────────────────────────────────────────────────────

class TelegramModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class User(TelegramModel):
    id: int
    is_bot: bool = False
    first_name: str = ""
    last_name: Optional[str] = None
    username: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name or ''}".strip()


class Chat(TelegramModel):
    id: int
    type: str = "private"
    username: Optional[str] = None
    title: Optional[str] = None


class MessageEntity(TelegramModel):
    type: str
    offset: int = 0
    length: int = 0


class Message(TelegramModel):
    message_id: int
    chat: Optional[Chat] = None
    from_user: Optional[User] = Field(default=None, alias="from")
    date: int = 0
    text: Optional[str] = None
    caption: Optional[str] = None
    entities: list[MessageEntity] = []
    caption_entities: list[MessageEntity] = []
    sticker: Optional[dict[str, Any]] = None
    reply_to_message: Optional[Message] = None

    @property
    def sender_id(self) -> Optional[int]:
        return self.from_user.id if self.from_user else None

    @property
    def chat_id(self) -> Optional[int]:
        return self.chat.id if self.chat else None

    @property
    def is_command(self) -> bool:
        return any(entity.type == "bot_command" for entity in self.entities)


class Update(TelegramModel):
    update_id: int
    message: Optional[Message] = None


Message.model_rebuild()


# ──────────────────────────────────────────────────────────────
#  Correlation store
# ──────────────────────────────────────────────────────────────

ChatRef = Union[int, str]


class CorrelationEntry(BaseModel):
    """Where a relayed copy came from: the origin chat and message id."""
    model_config = ConfigDict(frozen=True)

    origin_chat: ChatRef
    origin_message: int


# ──────────────────────────────────────────────────────────────
#  Deferred tasks
# ──────────────────────────────────────────────────────────────

class DeferredAction(str, Enum):
    DELETE_MESSAGE = "delete_message"


class TaskRecord(BaseModel):
    """Persisted state of one deferred task instance."""
    action: str
    params: dict[str, Any] = {}


class ScheduleResult(BaseModel):
    status: str = "scheduled"
    identity: str
    run_at: int                                  # epoch milliseconds


# ──────────────────────────────────────────────────────────────
#  Routing
# ──────────────────────────────────────────────────────────────

class RouteKind(str, Enum):
    IGNORED = "ignored"
    BLOCKED = "blocked"
    COMMAND = "command"
    OWNER_REPLY = "owner_reply"
    USER_MESSAGE = "user_message"
    FALLBACK = "fallback"
