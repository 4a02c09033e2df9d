"""Notification transport — delivers composed messages to the operator chat.

send() never raises: network errors, non-2xx responses and ``ok: false``
envelopes all become False and are logged. There are no retries; a failed
notification is dropped.
"""

import asyncio
import logging

import httpx

from notify.telegram import TelegramClient, TelegramError
from relay.composer import Notification

logger = logging.getLogger(__name__)


class NotificationTransport:
    def __init__(self, client: TelegramClient, chat_id: str):
        self.client = client
        self.chat_id = chat_id
        self._in_flight: set[asyncio.Task] = set()

    async def send(self, notification: Notification) -> bool:
        try:
            await self.client.send_message(self.chat_id, notification.text, notification.reply_markup)
        except (TelegramError, httpx.HTTPError) as e:
            logger.error("Telegram send failed: %s", e)
            return False
        return True

    def dispatch(self, notification: Notification) -> "asyncio.Task[bool]":
        """Fire-and-forget send; the returned task may be awaited or ignored."""
        task = asyncio.get_running_loop().create_task(self.send(notification))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def aclose(self) -> None:
        """Wait for dispatched sends still in flight."""
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)
