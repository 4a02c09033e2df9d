"""Async Telegram Bot API client (httpx).

Only the three methods the relay needs: getMe, getUpdates and sendMessage.
Every call returns the envelope's ``result`` or raises a TelegramError.
"""

import json
from typing import Any, Optional

import httpx

# Telegram answers 409 when another consumer is long-polling the same bot.
CONFLICT_STATUS = 409


class TelegramError(Exception):
    """Base class for Bot API failures."""


class TelegramAPIError(TelegramError):
    """Non-2xx response or an ``ok: false`` envelope."""

    def __init__(self, method: str, status_code: Optional[int], description: str = ""):
        self.method = method
        self.status_code = status_code
        self.description = description
        super().__init__(f"{method} failed ({status_code}): {description}")


class TelegramConflictError(TelegramAPIError):
    """Another getUpdates consumer is active for this bot."""


class TelegramClient:
    def __init__(
        self,
        token: str,
        api_base: str = "https://api.telegram.org",
        timeout: float = 10.0,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self.timeout = timeout
        self._http = http or httpx.AsyncClient(
            base_url=f"{api_base.rstrip('/')}/bot{token}/",
            timeout=timeout,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _call(self, method: str, payload: Optional[dict] = None, timeout: Optional[float] = None) -> Any:
        response = await self._http.post(method, json=payload or {}, timeout=timeout or self.timeout)

        try:
            data = response.json()
        except ValueError:
            data = {}

        if not isinstance(data, dict):
            raise TelegramAPIError(method, response.status_code, "malformed response")

        description = str(data.get("description", ""))
        if response.status_code == CONFLICT_STATUS:
            raise TelegramConflictError(method, response.status_code, description)
        if response.is_error or not data.get("ok"):
            raise TelegramAPIError(method, response.status_code, description or "ok=false")
        return data.get("result")

    async def get_me(self) -> dict:
        return await self._call("getMe")

    async def get_updates(self, offset: Optional[int] = None, timeout: int = 0, limit: Optional[int] = None) -> list[dict]:
        payload: dict[str, Any] = {"timeout": timeout, "allowed_updates": ["callback_query"]}
        if offset is not None:
            payload["offset"] = offset
        if limit is not None:
            payload["limit"] = limit
        # The HTTP timeout must outlast the server-side long-poll wait.
        result = await self._call("getUpdates", payload, timeout=self.timeout + timeout)
        if not isinstance(result, list):
            raise TelegramAPIError("getUpdates", None, "result is not a list")
        return result

    async def send_message(self, chat_id: str, text: str, reply_markup: Optional[dict] = None) -> dict:
        payload: dict[str, Any] = {"chat_id": chat_id, "text": text}
        if reply_markup:
            payload["reply_markup"] = json.dumps(reply_markup)
        return await self._call("sendMessage", payload)
