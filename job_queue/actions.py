"""
Deferred Actions — The closed set of effects a deferred task can perform.

Persisted task records carry the action as a plain string. Decoding goes
through ``DeferredAction`` so an unknown tag (an older deployment, a hand
edited store) is logged and skipped instead of failing the wake handler.
"""
from __future__ import annotations

import structlog
from typing import Any, Awaitable, Callable

from models.schemas import DeferredAction, TaskRecord

logger = structlog.get_logger()

ActionHandler = Callable[[dict[str, Any]], Awaitable[None]]


class ActionExecutor:
    """Runs a persisted task record against the Telegram gateway."""

    def __init__(self, gateway):
        self.gateway = gateway
        self._handlers: dict[DeferredAction, ActionHandler] = {
            DeferredAction.DELETE_MESSAGE: self._delete_message,
        }
        missing = set(DeferredAction) - set(self._handlers)
        if missing:
            raise TypeError(f"No handler for deferred actions: {sorted(a.value for a in missing)}")

    async def execute(self, record: TaskRecord) -> None:
        try:
            action = DeferredAction(record.action)
        except ValueError:
            logger.warning("deferred_action_unknown", action=record.action)
            return
        await self._handlers[action](record.params)

    async def _delete_message(self, params: dict[str, Any]) -> None:
        chat_id = params["chat_id"]
        message_id = params["message_id"]
        deleted = await self.gateway.delete_message(chat_id, message_id)
        logger.info("deferred_delete_done",
                    chat_id=chat_id, message_id=message_id, deleted=deleted)
