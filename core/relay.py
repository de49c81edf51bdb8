"""
Message Relay — The two directions a message can travel.

  sender → owner:  copy into the owner's chat, remember copy → origin,
                   then tag the copy with who sent it
  owner → sender:  the owner replies to a relayed copy; look the copy up and
                   copy the reply back as a reply to the sender's original

The correlation entry is only written once the copy exists, so a stored
entry never points at a message that was not delivered.
"""
from __future__ import annotations

import structlog
from typing import Optional

from channels.markup import build_sender_info, format_text_html, with_sender_info
from context.correlation import CorrelationStore
from core import notices
from models.schemas import ChatRef, Message

logger = structlog.get_logger()


class MessageRelay:

    def __init__(
        self,
        gateway,
        correlations: CorrelationStore,
        owner_id: int,
        bot_id: int,
        ttl_seconds: int,
    ):
        self.gateway = gateway
        self.correlations = correlations
        self.owner_id = owner_id
        self.bot_id = bot_id
        self.ttl_seconds = ttl_seconds

    @property
    def retention_days(self) -> str:
        return f"{self.ttl_seconds / 86400:g}"

    # ── sender → owner ────────────────────────────────────

    async def relay_to_owner(self, message: Message) -> Optional[int]:
        """Copy a sender's message to the owner. Returns the copy's id, or None on failure."""
        chat_id = message.chat_id
        logger.info("relay_to_owner",
                    user_id=message.sender_id, chat_id=chat_id, message_id=message.message_id)

        reply_to = await self._owner_thread_target(message)
        try:
            copy_id = await self.gateway.copy_message(
                self.owner_id, chat_id, message.message_id, reply_to,
            )
            await self.correlations.put(self.ttl_seconds, copy_id, chat_id, message.message_id)
            await self._attach_sender_info(message, copy_id)
        except Exception as e:
            logger.error("relay_to_owner_failed",
                         user_id=message.sender_id, message_id=message.message_id, error=str(e))
            await self._notify(chat_id, notices.RELAY_FAILED)
            return None

        logger.info("relayed_to_owner", message_id=message.message_id, copy_id=copy_id)
        return copy_id

    async def _owner_thread_target(self, message: Message) -> Optional[int]:
        """If the sender replied to one of the owner's relayed replies, thread under it."""
        replied = message.reply_to_message
        if replied is None or replied.sender_id != self.bot_id:
            return None
        entry = await self.correlations.get(replied.message_id)
        if entry is None or entry.origin_chat != self.owner_id:
            return None
        logger.info("relay_threaded_reply",
                    bot_message_id=replied.message_id, owner_message_id=entry.origin_message)
        return entry.origin_message

    async def _attach_sender_info(self, message: Message, copy_id: int) -> None:
        sender = message.from_user
        if message.text:
            await self.gateway.edit_message_text(
                self.owner_id, copy_id, with_sender_info(sender, message.text),
            )
        elif message.caption:
            await self.gateway.edit_message_caption(
                self.owner_id, copy_id, with_sender_info(sender, message.caption),
            )
        else:
            # stickers and other media without a caption cannot be edited
            await self.gateway.send_message(
                self.owner_id, build_sender_info(sender), reply_to_message_id=copy_id,
            )

    # ── owner → sender ────────────────────────────────────

    async def relay_owner_reply(self, message: Message) -> Optional[int]:
        """Copy the owner's reply back to the original sender."""
        replied_id = message.reply_to_message.message_id
        entry = await self.correlations.get(replied_id)
        if entry is None:
            logger.warning("owner_reply_source_missing", bot_message_id=replied_id)
            await self._notify(
                self.owner_id,
                notices.SOURCE_UNAVAILABLE.format(days=self.retention_days),
                reply_to=message.message_id,
            )
            return None

        try:
            copy_id = await self.gateway.copy_message(
                entry.origin_chat, message.chat_id, message.message_id, entry.origin_message,
            )
        except Exception as e:
            logger.error("owner_reply_failed",
                         target_chat=entry.origin_chat, message_id=message.message_id, error=str(e))
            await self._notify(
                self.owner_id,
                notices.REPLY_FAILED.format(chat_id=entry.origin_chat, error=e),
                reply_to=message.message_id,
            )
            return None

        await self.correlations.put(self.ttl_seconds, copy_id, self.owner_id, message.message_id)
        logger.info("owner_reply_relayed",
                    target_chat=entry.origin_chat,
                    target_message=entry.origin_message,
                    copy_id=copy_id)
        return copy_id

    # ── helpers ───────────────────────────────────────────

    async def _notify(self, chat_id: ChatRef, text: str, reply_to: Optional[int] = None) -> None:
        try:
            await self.gateway.send_message(chat_id, format_text_html(text), reply_to)
        except Exception as e:
            logger.error("notice_send_failed", chat_id=chat_id, error=str(e))
