"""Shared fixtures for the relay test suite."""

import pytest

from notify.telegram import TelegramConflictError
from notify.transport import NotificationTransport
from stores.directory import UserDirectory
from stores.identity import IdentityResolver
from stores.status_store import StatusStore

DAY = 24 * 60 * 60


class FakeClock:
    """Manually advanced replacement for time.time."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTelegramClient:
    """
    Scripted stand-in for TelegramClient.

    getUpdates first consumes `updates_script` (lists are returned, exceptions
    raised); once it is empty it serves `queue` filtered by offset.
    """

    def __init__(self):
        self.queue: list[dict] = []
        self.updates_script: list = []
        self.get_me_errors: list[Exception] = []
        self.send_error = None
        self.sent: list[tuple[str, str, dict | None]] = []
        self.update_calls: list[tuple] = []
        self.closed = False

    async def get_me(self):
        if self.get_me_errors:
            raise self.get_me_errors.pop(0)
        return {"id": 42, "is_bot": True, "username": "relay_bot"}

    async def get_updates(self, offset=None, timeout=0, limit=None):
        self.update_calls.append((offset, timeout))
        if self.updates_script:
            item = self.updates_script.pop(0)
            if isinstance(item, BaseException):
                raise item
            return item
        if offset == -1:
            return self.queue[-1:]
        return [u for u in self.queue if u["update_id"] >= (offset or 0)]

    async def send_message(self, chat_id, text, reply_markup=None):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((chat_id, text, reply_markup))
        return {"message_id": len(self.sent)}

    async def aclose(self):
        self.closed = True


def callback_update(update_id: int, data: str) -> dict:
    return {
        "update_id": update_id,
        "callback_query": {"id": f"cb{update_id}", "data": data, "from": {"id": 7}},
    }


def conflict() -> TelegramConflictError:
    return TelegramConflictError("getUpdates", 409, "Conflict: terminated by other getUpdates request")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def directory(clock):
    return UserDirectory(clock=clock)


@pytest.fixture
def durable_directory(tmp_path, clock):
    d = UserDirectory(tmp_path / "users.json", clock=clock)
    d.init()
    return d


@pytest.fixture
def status_store(clock):
    return StatusStore(DAY, clock=clock)


@pytest.fixture
def identity(directory):
    return IdentityResolver(directory, ttl_seconds=DAY)


@pytest.fixture
def fake_client():
    return FakeTelegramClient()


@pytest.fixture
def transport(fake_client):
    return NotificationTransport(fake_client, "-100500")
