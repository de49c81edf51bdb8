"""
Channel errors — Structured error hierarchy for outbound gateway calls.

Every remote failure surfaces as a ``ChannelError`` so callers can catch one
type, log it and decide whether a user-facing notice is worth sending.
"""
from __future__ import annotations

from typing import Optional


class ChannelError(Exception):
    """Base exception for all channel operations."""

    def __init__(self, message: str, channel: str = "", retryable: bool = False):
        self.channel = channel
        self.retryable = retryable
        super().__init__(message)


class GatewayError(ChannelError):
    """The request never produced a usable response (network, timeout, bad JSON)."""

    def __init__(self, message: str, method: str = "", retryable: bool = False):
        self.method = method
        super().__init__(message, channel="telegram", retryable=retryable)


class TelegramApiError(ChannelError):
    """Telegram answered with a non-2xx status or ``ok: false``."""

    def __init__(self, method: str, description: str = "", error_code: Optional[int] = None):
        self.method = method
        self.description = description
        self.error_code = error_code
        # 429 carries retry_after; everything else is a permanent rejection
        super().__init__(
            f"Telegram API error ({method}): {description or error_code}",
            channel="telegram",
            retryable=error_code == 429,
        )
