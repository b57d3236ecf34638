"""
Outbound messaging for telegram_message nodes.

API Reference: https://core.telegram.org/bots/api
"""

import logging
import os
from abc import ABC, abstractmethod
from typing import Any

import httpx

from febroflow.errors import FatalNodeError, RetryableNodeError

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org/bot"


class MessageSender(ABC):
    @abstractmethod
    async def send_message(
        self,
        chat_id: str,
        text: str,
        http_client: httpx.AsyncClient,
        credentials: dict[str, Any] | None = None,
        parse_mode: str | None = None,
    ) -> dict[str, Any]:
        """Send a text message; returns the provider's message payload."""


class TelegramMessageSender(MessageSender):
    """
    Sends messages through the Telegram Bot API.

    The bot token comes from the node's credentials (``bot_token`` or
    ``token``), then the constructor, then TELEGRAM_BOT_TOKEN.
    """

    def __init__(self, bot_token: str | None = None, api_base: str = TELEGRAM_API_BASE):
        self._token = bot_token
        self._api_base = api_base

    def _get_token(self, credentials: dict[str, Any] | None) -> str:
        credentials = credentials or {}
        token = credentials.get("bot_token") or credentials.get("token") or self._token
        token = token or os.getenv("TELEGRAM_BOT_TOKEN")
        if not token:
            raise FatalNodeError(
                "Telegram bot token not configured. Attach a credential with 'bot_token' "
                "or set TELEGRAM_BOT_TOKEN."
            )
        return token

    def _handle_response(self, response: httpx.Response) -> dict[str, Any]:
        """Map HTTP errors onto retryable/fatal node errors."""
        if response.status_code == 401:
            raise FatalNodeError("Invalid Telegram bot token")
        if response.status_code == 403:
            raise FatalNodeError("Bot was blocked by the user or lacks permissions")
        if response.status_code == 404:
            raise FatalNodeError("Chat not found")
        if response.status_code == 429:
            raise RetryableNodeError("Telegram rate limit exceeded")
        if response.status_code >= 500:
            raise RetryableNodeError(f"Telegram API error (HTTP {response.status_code})")
        if response.status_code >= 400:
            try:
                detail = response.json().get("description", response.text)
            except ValueError:
                detail = response.text
            raise FatalNodeError(f"Bad request: {detail}")

        body = response.json()
        return body.get("result", body)

    async def send_message(
        self,
        chat_id: str,
        text: str,
        http_client: httpx.AsyncClient,
        credentials: dict[str, Any] | None = None,
        parse_mode: str | None = None,
    ) -> dict[str, Any]:
        token = self._get_token(credentials)
        payload: dict[str, Any] = {"chat_id": chat_id, "text": text}
        if parse_mode:
            payload["parse_mode"] = parse_mode

        try:
            response = await http_client.post(f"{self._api_base}{token}/sendMessage", json=payload)
        except httpx.TransportError as e:
            raise RetryableNodeError(f"Telegram request failed: {e}") from e

        result = self._handle_response(response)
        logger.debug(f"Sent Telegram message to chat {chat_id}")
        return result
