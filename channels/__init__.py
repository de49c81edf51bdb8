"""
Channels — Outbound Telegram Bot API access.

- TelegramGateway: httpx client for the Bot API methods the relay uses
- ChannelError / GatewayError / TelegramApiError: failure hierarchy
- markup: HTML escaping, notice formatting, sender identity header
- commands: owner command menu installation
"""
from channels.base import ChannelError, GatewayError, TelegramApiError
from channels.telegram_client import TelegramGateway

__all__ = ["ChannelError", "GatewayError", "TelegramApiError", "TelegramGateway"]
