"""
Bot command menu — What the owner sees behind the "/" button.

Installed per chat (scope ``{"type": "chat"}``) when the owner sends /start,
so ordinary senders never see the admin commands in their menu.
"""
from __future__ import annotations

import structlog

from channels.base import ChannelError
from models.schemas import ChatRef

logger = structlog.get_logger()

BOT_COMMANDS: list[dict[str, str]] = [
    {"command": "start", "description": "🚀 Show the welcome message"},
    {"command": "ban", "description": "🚫 [Admin] Block a user (usage: /ban <user_id>)"},
    {"command": "unban", "description": "✅ [Admin] Unblock a user (usage: /unban <user_id>)"},
]


async def setup_owner_commands(gateway, chat_id: ChatRef) -> bool:
    """Install the command list and menu button for one chat. Never raises."""
    try:
        commands_set = await gateway.set_my_commands(
            BOT_COMMANDS, scope={"type": "chat", "chat_id": chat_id},
        )
        menu_set = await gateway.set_chat_menu_button(chat_id, {"type": "commands"})
    except ChannelError as e:
        logger.error("owner_commands_setup_failed", chat_id=chat_id, error=str(e))
        return False

    if not (commands_set and menu_set):
        logger.warning("owner_commands_setup_incomplete",
                       chat_id=chat_id, commands=commands_set, menu_button=menu_set)
        return False
    logger.info("owner_commands_installed", chat_id=chat_id)
    return True
