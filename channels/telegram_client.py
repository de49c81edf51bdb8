"""
Telegram Bot API Client — The outbound half of the relay.

Every method is a JSON POST to ``{bot_api}{token}/{method}``; Telegram answers
``{"ok": true, "result": ...}`` or ``{"ok": false, "error_code", "description"}``.

Only failures to establish a connection are retried. Once a request has
reached Telegram it may already have taken effect, and sending a copy twice
is worse than reporting an error.

API Docs: https://core.telegram.org/bots/api
"""
from __future__ import annotations

import structlog
from typing import Any, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from channels.base import GatewayError, TelegramApiError
from models.schemas import ChatRef

logger = structlog.get_logger()

PARSE_MODE = "HTML"


class TelegramGateway:
    """Async Bot API client used by the router and the deferred actions."""

    def __init__(self, api_url: str, client: httpx.AsyncClient = None, timeout: float = 30.0):
        self.api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout, connect=10.0),
                headers={"Content-Type": "application/json"},
            )
            self._owns_client = True
        return self._client

    @retry(
        retry=retry_if_exception_type((httpx.ConnectError, httpx.ConnectTimeout)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, max=2),
        reraise=True,
    )
    async def _post(self, method: str, payload: dict[str, Any]) -> httpx.Response:
        client = await self._get_client()
        return await client.post(f"{self.api_url}/{method}", json=payload)

    async def call(self, method: str, **params: Any) -> Any:
        """Invoke a Bot API method and return its ``result``. None values are dropped."""
        payload = {k: v for k, v in params.items() if v is not None}
        logger.debug("telegram_api_call", method=method)

        try:
            resp = await self._post(method, payload)
        except httpx.HTTPError as e:
            logger.error("telegram_transport_error", method=method, error=str(e))
            raise GatewayError(f"{method} request failed: {e}", method=method, retryable=True) from e

        try:
            data = resp.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            if resp.status_code >= 400:
                raise TelegramApiError(method, resp.text[:200], resp.status_code)
            raise GatewayError(f"{method} returned a non-JSON body", method=method)

        if resp.status_code >= 400 or not data.get("ok"):
            logger.error("telegram_api_error",
                         method=method,
                         status=resp.status_code,
                         description=data.get("description"))
            raise TelegramApiError(
                method,
                data.get("description", ""),
                data.get("error_code", resp.status_code),
            )
        return data.get("result")

    # ── Messages ──────────────────────────────────────────

    async def copy_message(
        self,
        chat_id: ChatRef,
        from_chat_id: ChatRef,
        message_id: int,
        reply_to_message_id: Optional[int] = None,
    ) -> int:
        """Copy a message into ``chat_id`` and return the copy's message id."""
        result = await self.call(
            "copyMessage",
            chat_id=chat_id,
            from_chat_id=from_chat_id,
            message_id=message_id,
            reply_parameters=_reply_parameters(reply_to_message_id),
        )
        new_id = (result or {}).get("message_id")
        if new_id is None:
            raise GatewayError("copyMessage returned no message_id", method="copyMessage")
        return new_id

    async def send_message(
        self, chat_id: ChatRef, text: str, reply_to_message_id: Optional[int] = None,
    ) -> int:
        result = await self.call(
            "sendMessage",
            chat_id=chat_id,
            text=text,
            parse_mode=PARSE_MODE,
            reply_parameters=_reply_parameters(reply_to_message_id),
            link_preview_options={"is_disabled": True},
        )
        new_id = (result or {}).get("message_id")
        if new_id is None:
            raise GatewayError("sendMessage returned no message_id", method="sendMessage")
        return new_id

    async def edit_message_text(self, chat_id: ChatRef, message_id: int, text: str) -> Any:
        return await self.call(
            "editMessageText",
            chat_id=chat_id,
            message_id=message_id,
            text=text,
            parse_mode=PARSE_MODE,
            link_preview_options={"is_disabled": True},
        )

    async def edit_message_caption(self, chat_id: ChatRef, message_id: int, caption: str) -> Any:
        return await self.call(
            "editMessageCaption",
            chat_id=chat_id,
            message_id=message_id,
            caption=caption,
            parse_mode=PARSE_MODE,
            show_caption_above_media=True,
        )

    async def delete_message(self, chat_id: ChatRef, message_id: int) -> bool:
        result = await self.call("deleteMessage", chat_id=chat_id, message_id=message_id)
        return result is True

    # ── Bot setup ─────────────────────────────────────────

    async def set_my_commands(
        self, commands: list[dict[str, str]], scope: Optional[dict[str, Any]] = None,
    ) -> bool:
        result = await self.call("setMyCommands", commands=commands, scope=scope)
        return result is True

    async def set_chat_menu_button(self, chat_id: ChatRef, menu_button: dict[str, Any]) -> bool:
        result = await self.call("setChatMenuButton", chat_id=chat_id, menu_button=menu_button)
        return result is True

    async def close(self) -> None:
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


def _reply_parameters(reply_to_message_id: Optional[int]) -> Optional[dict[str, Any]]:
    if not reply_to_message_id:
        return None
    # still deliver if the target was deleted in the meantime
    return {"message_id": reply_to_message_id, "allow_sending_without_reply": True}
