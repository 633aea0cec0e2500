"""Telegram Bot API client for outbound messages.

One POST per call, TLS verification on, fixed timeout. Failures are raised
as one of three error classes so the caller can log them precisely:

- TelegramTransportError: connection, DNS or timeout failure
- TelegramProtocolError: response body is not a JSON object
- TelegramAPIError: JSON response with ``ok: false``
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"
MAX_MESSAGE_LENGTH = 4096
_RAW_PREFIX_LENGTH = 200


class TelegramError(Exception):
    """Base class for Telegram Bot API failures."""


class TelegramTransportError(TelegramError):
    """Network-level failure talking to the Bot API."""


class TelegramProtocolError(TelegramError):
    """Bot API returned something that is not a JSON object."""

    def __init__(self, status_code: int, raw_prefix: str) -> None:
        self.status_code = status_code
        self.raw_prefix = raw_prefix
        super().__init__(
            f"JSON decode error. Status: {status_code}. Raw response: {raw_prefix}"
        )


class TelegramAPIError(TelegramError):
    """Bot API answered with ok=false."""

    def __init__(self, error_code: int, description: str) -> None:
        self.error_code = error_code
        self.description = description
        super().__init__(f"Telegram API Error ({error_code}): {description}")


def truncate_text(text: str, limit: int = MAX_MESSAGE_LENGTH) -> str:
    """Cut text to the Bot API limit. No ellipsis is added."""
    if len(text) > limit:
        return text[:limit]
    return text


def _error_code(value: Any, status_code: int) -> int:
    """Numeric ``error_code`` from an ok=false body, else the HTTP status."""
    if isinstance(value, bool):
        return status_code
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value)
    return status_code


class TelegramClient:
    """Sends messages through the Telegram Bot API."""

    def __init__(
        self,
        bot_token: str,
        api_base: str = TELEGRAM_API_BASE,
        timeout: float = 10.0,
        max_length: int = MAX_MESSAGE_LENGTH,
    ) -> None:
        self._bot_token = bot_token
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        self._max_length = max_length

    async def send_message(
        self,
        chat_id: int | str,
        text: str,
        parse_mode: str = "Markdown",
    ) -> dict[str, Any]:
        """Send a text message and return the decoded API response."""
        payload = {
            "chat_id": chat_id,
            "text": truncate_text(text, self._max_length),
            "parse_mode": parse_mode,
        }
        try:
            return await self._request("sendMessage", payload)
        except TelegramError as exc:
            logger.error(
                "Failed to send message to chat %s: %s", chat_id, exc,
            )
            raise

    async def set_webhook(self, url: str, secret_token: str) -> dict[str, Any]:
        """Register the webhook URL together with the secret header value."""
        return await self._request(
            "setWebhook", {"url": url, "secret_token": secret_token},
        )

    async def _request(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        url = f"{self._api_base}/bot{self._bot_token}/{method}"

        try:
            async with httpx.AsyncClient(verify=True, timeout=self._timeout) as client:
                resp = await client.post(url, json=params)
        except httpx.HTTPError as exc:
            # Never echo the URL: it carries the bot token.
            raise TelegramTransportError(
                f"Transport error calling {method}: {type(exc).__name__}"
            ) from exc

        try:
            decoded = resp.json()
        except ValueError:
            decoded = None
        if not isinstance(decoded, dict):
            raise TelegramProtocolError(resp.status_code, resp.text[:_RAW_PREFIX_LENGTH])

        if decoded.get("ok") is not True:
            raise TelegramAPIError(
                error_code=_error_code(decoded.get("error_code"), resp.status_code),
                description=str(decoded.get("description", "Unknown API error")),
            )
        return decoded
