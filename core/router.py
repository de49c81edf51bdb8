"""
Relay Router — Decides what happens to each inbound Telegram update.

Classification, first match wins:

  1. BLOCKED       sender is blacklisted: unauthorized notice, then the
                   notice (and the original) are deleted after a short delay
  2. COMMAND       message has a bot_command entity
  3. OWNER_REPLY   owner replying to a message the bot sent
  4. FALLBACK      owner's other messages: logged only
  5. USER_MESSAGE  anyone else: relay to the owner

Updates without a sender or chat are IGNORED before any of the above.

``process_update`` never raises; every failure ends in a log line and, where
someone is waiting on an answer, a notice.
"""
from __future__ import annotations

import structlog
from typing import Any, Union

from pydantic import ValidationError

from channels.markup import format_text_html
from config.settings import RelayConfig
from context.blacklist import BlacklistStore
from context.correlation import CorrelationStore
from core import notices
from core.commands import CommandHandler
from core.relay import MessageRelay
from job_queue.scheduler import DeferredTaskScheduler
from models.schemas import Message, RouteKind, Update

logger = structlog.get_logger()


class RelayRouter:

    def __init__(
        self,
        gateway,
        blacklist: BlacklistStore,
        scheduler: DeferredTaskScheduler,
        relay: MessageRelay,
        commands: CommandHandler,
        config: RelayConfig = None,
    ):
        self.gateway = gateway
        self.blacklist = blacklist
        self.scheduler = scheduler
        self.relay = relay
        self.commands = commands
        self.config = config or RelayConfig()

    @property
    def owner_id(self) -> int:
        return self.relay.owner_id

    @property
    def bot_id(self) -> int:
        return self.relay.bot_id

    # ── Entry point ───────────────────────────────────────

    async def process_update(self, payload: Union[Update, dict[str, Any]]) -> RouteKind:
        try:
            update = payload if isinstance(payload, Update) else Update.model_validate(payload)
        except ValidationError as e:
            logger.warning("update_invalid", errors=e.error_count())
            return RouteKind.IGNORED

        message = update.message
        if message is None:
            logger.info("update_ignored", update_id=update.update_id, reason="not_a_message")
            return RouteKind.IGNORED

        try:
            kind = await self.classify(message)
            logger.info("update_classified",
                        update_id=update.update_id, route=kind.value,
                        user_id=message.sender_id, chat_id=message.chat_id)
            await self._dispatch(kind, message)
            return kind
        except Exception as e:
            logger.error("update_processing_error",
                         update_id=update.update_id, error=str(e), exc_info=True)
            return RouteKind.IGNORED

    async def classify(self, message: Message) -> RouteKind:
        user_id = message.sender_id
        if user_id is None or message.chat_id is None:
            return RouteKind.IGNORED
        if await self._is_blocked(user_id):
            return RouteKind.BLOCKED
        if message.is_command:
            return RouteKind.COMMAND
        if user_id == self.owner_id:
            replied = message.reply_to_message
            if replied is not None and replied.sender_id == self.bot_id:
                return RouteKind.OWNER_REPLY
            return RouteKind.FALLBACK
        return RouteKind.USER_MESSAGE

    async def _dispatch(self, kind: RouteKind, message: Message) -> None:
        if kind is RouteKind.IGNORED:
            logger.warning("message_missing_ids", message_id=message.message_id)
        elif kind is RouteKind.BLOCKED:
            await self._handle_blocked(message)
        elif kind is RouteKind.COMMAND:
            await self.commands.handle(message)
        elif kind is RouteKind.OWNER_REPLY:
            await self.relay.relay_owner_reply(message)
        elif kind is RouteKind.USER_MESSAGE:
            await self.relay.relay_to_owner(message)
        else:
            logger.info("owner_message_not_relayed",
                        message_id=message.message_id,
                        is_reply=message.reply_to_message is not None)

    # ── Blocked senders ───────────────────────────────────

    async def _is_blocked(self, user_id: int) -> bool:
        try:
            return await self.blacklist.contains(user_id)
        except Exception as e:
            # a broken blacklist must not stop the relay
            logger.error("blacklist_read_failed", user_id=user_id, error=str(e))
            return False

    async def _handle_blocked(self, message: Message) -> None:
        chat_id = message.chat_id
        delay_ms = self.config.blocked_cleanup_delay_ms
        logger.info("sender_blocked", user_id=message.sender_id, chat_id=chat_id)

        if self.config.delete_blocked_original:
            await self._schedule_deletion(chat_id, message.message_id, delay_ms)

        try:
            notice_id = await self.gateway.send_message(chat_id, format_text_html(notices.UNAUTHORIZED))
        except Exception as e:
            logger.error("blocked_notice_failed", chat_id=chat_id, error=str(e))
            return
        await self._schedule_deletion(chat_id, notice_id, delay_ms)

    async def _schedule_deletion(self, chat_id: int, message_id: int, delay_ms: int) -> None:
        try:
            await self.scheduler.schedule_deletion(chat_id, message_id, delay_ms)
        except Exception as e:
            logger.error("deletion_schedule_failed",
                         chat_id=chat_id, message_id=message_id, error=str(e))


def build_router(settings, gateway, stores, scheduler: DeferredTaskScheduler) -> RelayRouter:
    """Wire a RelayRouter from settings and already-created dependencies."""
    tg, relay_cfg = settings.telegram, settings.relay
    blacklist = BlacklistStore(stores.config)
    correlations = CorrelationStore(
        stores.relay,
        max_entries=relay_cfg.max_correlation_entries,
        key_scope=relay_cfg.correlation_key_scope,
    )
    relay = MessageRelay(
        gateway, correlations,
        owner_id=tg.owner_id, bot_id=tg.bot_id, ttl_seconds=relay_cfg.kv_expiration_ttl,
    )
    commands = CommandHandler(gateway, blacklist, tg.owner_id, tg.welcome_text)
    return RelayRouter(gateway, blacklist, scheduler, relay, commands, relay_cfg)
