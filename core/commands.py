"""
Command Handler — /start, /ban and /unban.

/start answers everyone with the welcome text and, for the owner, installs
the command menu. /ban and /unban are owner-only and idempotent.
"""
from __future__ import annotations

import re
import structlog
from typing import Optional

from channels.base import ChannelError
from channels.commands import setup_owner_commands
from channels.markup import format_text_html
from context.blacklist import BlacklistStore
from core import notices
from models.schemas import Message

logger = structlog.get_logger()

_COMMAND = re.compile(r"^/(\w+)(?:@\w+)?(?:\s+(.*))?", re.DOTALL)
_USER_ID = re.compile(r"-?\d+")


def parse_command(text: str) -> Optional[tuple[str, str]]:
    """Split ``/cmd@bot args`` into ``("cmd", "args")``; None if not a command."""
    match = _COMMAND.match(text or "")
    if not match:
        return None
    return match.group(1).lower(), (match.group(2) or "").strip()


class CommandHandler:

    def __init__(self, gateway, blacklist: BlacklistStore, owner_id: int, welcome_text: str):
        self.gateway = gateway
        self.blacklist = blacklist
        self.owner_id = owner_id
        self.welcome_text = welcome_text

    async def handle(self, message: Message) -> Optional[str]:
        """Run the command in ``message``. Returns the command name, or None if unparseable."""
        chat_id = message.chat_id
        user_id = message.sender_id
        parsed = parse_command(message.text)
        if parsed is None:
            logger.warning("command_unparseable", text=(message.text or "")[:100])
            return None

        command, args = parsed
        logger.info("command_received", command=command, args=args, user_id=user_id)

        try:
            if command == "start":
                await self._reply(chat_id, self.welcome_text)
                if user_id == self.owner_id:
                    await setup_owner_commands(self.gateway, chat_id)
            elif command in ("ban", "unban"):
                await self._blacklist_command(command, args, chat_id, user_id)
            else:
                await self._reply(chat_id, notices.UNKNOWN_COMMAND.format(command=command))
        except Exception as e:
            logger.error("command_failed", command=command, error=str(e))
            try:
                await self._reply(chat_id, notices.COMMAND_ERROR)
            except ChannelError as send_error:
                logger.error("command_error_notice_failed", error=str(send_error))
        return command

    async def _blacklist_command(self, command: str, args: str, chat_id: int, user_id: int):
        if user_id != self.owner_id:
            logger.warning("command_not_permitted", command=command, user_id=user_id)
            await self._reply(chat_id, notices.NO_PERMISSION)
            return

        if not _USER_ID.fullmatch(args):
            await self._reply(chat_id, notices.USAGE.format(command=command))
            return
        target = int(args)

        if command == "ban":
            ok = await self.blacklist.add(target)
            text = notices.BANNED if ok else notices.BAN_FAILED
        else:
            ok = await self.blacklist.remove(target)
            text = notices.UNBANNED if ok else notices.UNBAN_FAILED
        await self._reply(chat_id, text.format(user_id=target))

    async def _reply(self, chat_id: int, text: str) -> int:
        return await self.gateway.send_message(chat_id, format_text_html(text))
