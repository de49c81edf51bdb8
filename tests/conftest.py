"""Shared test fixtures for the relay bot."""
import itertools
from typing import Any, Optional

import pytest
import pytest_asyncio

from channels.base import TelegramApiError
from config.settings import Settings, TelegramConfig, RelayConfig, DatabaseConfig
from database.store_factory import KVStores
from database.store_memory import InMemoryKVStore
from job_queue.actions import ActionExecutor
from job_queue.scheduler import DeferredTaskScheduler
from core.router import build_router

OWNER_ID = 42
BOT_ID = 123456
BOT_TOKEN = f"{BOT_ID}:TEST-TOKEN"


class FakeClock:
    """Manually advanced epoch clock (seconds)."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGateway:
    """Records every Bot API call; message ids are handed out from 1000 up."""

    def __init__(self):
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.fail_on: set[str] = set()
        self._ids = itertools.count(1000)
        self.closed = False

    def _record(self, method: str, **kwargs) -> None:
        self.calls.append((method, kwargs))
        if method in self.fail_on:
            raise TelegramApiError(method, "Bad Request: simulated failure", 400)

    def calls_to(self, method: str) -> list[dict[str, Any]]:
        return [kw for m, kw in self.calls if m == method]

    async def copy_message(self, chat_id, from_chat_id, message_id, reply_to_message_id=None) -> int:
        self._record("copy_message", chat_id=chat_id, from_chat_id=from_chat_id,
                     message_id=message_id, reply_to_message_id=reply_to_message_id)
        return next(self._ids)

    async def send_message(self, chat_id, text, reply_to_message_id=None) -> int:
        self._record("send_message", chat_id=chat_id, text=text,
                     reply_to_message_id=reply_to_message_id)
        return next(self._ids)

    async def edit_message_text(self, chat_id, message_id, text):
        self._record("edit_message_text", chat_id=chat_id, message_id=message_id, text=text)
        return True

    async def edit_message_caption(self, chat_id, message_id, caption):
        self._record("edit_message_caption", chat_id=chat_id, message_id=message_id, caption=caption)
        return True

    async def delete_message(self, chat_id, message_id) -> bool:
        self._record("delete_message", chat_id=chat_id, message_id=message_id)
        return True

    async def set_my_commands(self, commands, scope=None) -> bool:
        self._record("set_my_commands", commands=commands, scope=scope)
        return True

    async def set_chat_menu_button(self, chat_id, menu_button) -> bool:
        self._record("set_chat_menu_button", chat_id=chat_id, menu_button=menu_button)
        return True

    async def close(self) -> None:
        self.closed = True


def make_message(
    message_id: int,
    user_id: Optional[int],
    text: Optional[str] = None,
    chat_id: Optional[int] = None,
    reply_to: Optional[dict] = None,
    **extra: Any,
) -> dict[str, Any]:
    """Build a Telegram message payload as it arrives in a webhook update."""
    message: dict[str, Any] = {
        "message_id": message_id,
        "date": 1_700_000_000,
        "chat": {"id": chat_id if chat_id is not None else user_id, "type": "private"},
    }
    if user_id is not None:
        message["from"] = {"id": user_id, "is_bot": False, "first_name": f"User{user_id}"}
    if text is not None:
        message["text"] = text
        if text.startswith("/"):
            message["entities"] = [{"type": "bot_command", "offset": 0,
                                    "length": len(text.split()[0])}]
    if reply_to is not None:
        message["reply_to_message"] = reply_to
    message.update(extra)
    return message


def make_update(update_id: int = 1, **message_kwargs: Any) -> dict[str, Any]:
    return {"update_id": update_id, "message": make_message(**message_kwargs)}


def bot_message(message_id: int) -> dict[str, Any]:
    """A message previously sent by the bot, as seen in reply_to_message."""
    return {
        "message_id": message_id,
        "date": 1_700_000_000,
        "chat": {"id": OWNER_ID, "type": "private"},
        "from": {"id": BOT_ID, "is_bot": True, "first_name": "Relay"},
    }


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        telegram=TelegramConfig(
            bot_token=BOT_TOKEN,
            bot_id=BOT_ID,
            owner_id=OWNER_ID,
            welcome_text="Welcome!",
        ),
        relay=RelayConfig(),
        database=DatabaseConfig(store_backend="memory"),
    )


@pytest.fixture
def stores(clock) -> KVStores:
    return KVStores(
        relay=InMemoryKVStore("relay", clock=clock),
        config=InMemoryKVStore("config", clock=clock),
        timers=InMemoryKVStore("timers", clock=clock),
    )


@pytest_asyncio.fixture
async def scheduler(stores, gateway):
    scheduler = DeferredTaskScheduler(stores.timers, ActionExecutor(gateway))
    yield scheduler
    await scheduler.close()


@pytest.fixture
def router(settings, gateway, stores, scheduler):
    return build_router(settings, gateway, stores, scheduler)
