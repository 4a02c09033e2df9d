"""Approval status store — (user_id, step) → status with a retention window.

Thread-safe. Expired entries read as "none" (checked on every read) and are
physically removed by sweep(), which the background sweeper calls hourly.
The lock only covers the in-memory map; durable mirroring onto the user
directory happens after it is released.
"""

import logging
import threading
import time
from typing import Callable, Optional

from relay.state import (
    APPROVED,
    NONE,
    PENDING,
    REJECTED,
    StatusEntry,
    StatusValue,
)
from stores.directory import UserDirectory

logger = logging.getLogger(__name__)


class StatusStore:
    def __init__(
        self,
        retention_seconds: float,
        directory: Optional[UserDirectory] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.retention_seconds = retention_seconds
        self.directory = directory
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[tuple[str, str], StatusEntry] = {}

    @property
    def durable(self) -> bool:
        return self.directory is not None and self.directory.durable

    def init(self) -> None:
        """Hydrate from persisted user records (durable mode only)."""
        if not self.durable:
            return
        now = self._clock()
        restored = self.directory.statuses()
        with self._lock:
            for user_id, step, entry in restored:
                if now - entry.get("updated_at", 0) <= self.retention_seconds:
                    self._entries[(user_id, step)] = entry
        logger.info("Restored %d step statuses", len(self._entries))

    def close(self) -> None:
        self.clear()

    # ── Writes ──────────────────────────────────────────────────────────

    def set_pending(self, user_id: str, step: str) -> None:
        """Mark (user_id, step) as waiting for the operator. Overwrites any prior value."""
        with self._lock:
            entry = self._write_unlocked(user_id, step, PENDING)
        self._mirror(user_id, step, entry)

    def set_decision(self, user_id: str, step: str, approved: bool) -> bool:
        """
        Record the operator's verdict. Only applies to a key that is currently
        tracked; anything else (expired, never submitted, unknown user) is
        dropped and False is returned.
        """
        key = (user_id, step)
        if self.durable and user_id not in self.directory:
            logger.debug("Dropping decision for unknown user %s", user_id)
            return False
        with self._lock:
            if self._live_unlocked(key) is None:
                logger.debug("Dropping decision for untracked step %s:%s", user_id, step)
                return False
            entry = self._write_unlocked(user_id, step, APPROVED if approved else REJECTED)
        self._mirror(user_id, step, entry)
        return True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    # ── Reads ───────────────────────────────────────────────────────────

    def get(self, user_id: str, step: str) -> StatusValue:
        with self._lock:
            entry = self._live_unlocked((user_id, step))
            return entry["status"] if entry else NONE

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ── Eviction ────────────────────────────────────────────────────────

    def sweep(self) -> int:
        """Delete entries older than the retention window. Returns how many were removed."""
        cutoff = self._clock() - self.retention_seconds
        with self._lock:
            expired = [k for k, v in self._entries.items() if v["updated_at"] < cutoff]
            for k in expired:
                del self._entries[k]
        if expired and self.durable:
            self.directory.forget_step_statuses(expired)
        return len(expired)

    # ── Internals ───────────────────────────────────────────────────────

    def _live_unlocked(self, key: tuple[str, str]) -> Optional[StatusEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry["updated_at"] > self.retention_seconds:
            return None
        return entry

    def _write_unlocked(self, user_id: str, step: str, status: StatusValue) -> StatusEntry:
        entry = StatusEntry(status=status, updated_at=self._clock())
        self._entries[(user_id, step)] = entry
        return entry

    def _mirror(self, user_id: str, step: str, entry: StatusEntry) -> None:
        if self.durable:
            self.directory.record_step_status(user_id, step, entry)
