"""User directory — the single keyed record store behind identity and statuses.

In memory mode it is a plain dict guarded by a lock. In durable mode every
mutation marks the directory dirty; flush() serializes it to JSON, writes it
to a temporary file next to ``path`` and atomically replaces the previous
file, so a failed write never corrupts the last good copy. Mutations never
touch the disk; the persistence worker calls flush() off the event loop and
close() flushes whatever is left. Write failures are logged, the directory
stays dirty and the in-memory state stays authoritative.
"""

import json
import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, Optional

from relay.state import StatusEntry, UserRecord, new_user_record

logger = logging.getLogger(__name__)

# Longest id that still counts towards the minted-id counter.
MAX_NUMERIC_ID_DIGITS = 18


def numeric_id(user_id) -> Optional[int]:
    """Integer value of a plain ASCII-digit id of bounded length, else None."""
    if (
        isinstance(user_id, str)
        and user_id.isascii()
        and user_id.isdigit()
        and len(user_id) <= MAX_NUMERIC_ID_DIGITS
    ):
        return int(user_id)
    return None


class UserDirectory:
    def __init__(self, path: Optional[str | Path] = None, clock: Callable[[], float] = time.time):
        self.path = Path(path) if path else None
        self._clock = clock
        self._lock = threading.RLock()
        self._write_lock = threading.Lock()
        self._users: dict[str, UserRecord] = {}
        self._by_address: dict[str, str] = {}   # address → user_id
        self._next_id = 1
        self._dirty = False

    @property
    def durable(self) -> bool:
        return self.path is not None

    @property
    def dirty(self) -> bool:
        with self._lock:
            return self._dirty

    # ── Lifecycle ───────────────────────────────────────────────────────

    def init(self) -> None:
        """Load persisted records (durable mode). A corrupt file starts empty."""
        if not self.durable:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            return

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            users = data.get("users", {})
            next_id = numeric_id(str(data.get("next_id", 1))) or 1
        except (OSError, ValueError, AttributeError) as e:
            logger.error("Could not load user directory from %s: %s", self.path, e)
            return
        if not isinstance(users, dict):
            logger.error("Ignoring malformed users section in %s", self.path)
            return

        with self._lock:
            self._users = {uid: rec for uid, rec in users.items() if isinstance(rec, dict)}
            self._by_address = {
                rec["address"]: uid for uid, rec in self._users.items()
                if isinstance(rec.get("address"), str) and rec["address"]
            }
            minted = [n + 1 for n in map(numeric_id, self._users) if n is not None]
            self._next_id = max([next_id, 1] + minted)
        logger.info("Loaded %d user records from %s", len(self._users), self.path)

    def close(self) -> None:
        self.flush()

    def flush(self) -> bool:
        """Persist pending changes. Returns True when a file was written."""
        if not self.durable:
            return False
        with self._write_lock:
            with self._lock:
                if not self._dirty:
                    return False
                try:
                    text = json.dumps({"next_id": self._next_id, "users": self._users}, ensure_ascii=False)
                except (TypeError, ValueError) as e:
                    logger.error("Could not serialize user directory: %s", e)
                    return False
                self._dirty = False

            if self._write_file(text):
                return True
            with self._lock:
                self._dirty = True
            return False

    # ── Lookups ─────────────────────────────────────────────────────────

    def get(self, user_id: str) -> Optional[UserRecord]:
        with self._lock:
            rec = self._users.get(user_id)
            return _copy_record(rec) if rec else None

    def __contains__(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._users

    def __len__(self) -> int:
        with self._lock:
            return len(self._users)

    def find_or_create(self, address: str, max_age: Optional[float] = None) -> tuple[str, bool]:
        """
        Return (user_id, created) for an address.
        A record idle for longer than max_age is dropped and a new id minted.
        """
        now = self._clock()
        with self._lock:
            uid = self._by_address.get(address)
            rec = self._users.get(uid) if uid else None
            if rec is not None:
                if max_age is None or now - rec["last_seen"] <= max_age:
                    rec["last_seen"] = now
                    return uid, False
                self._drop_unlocked(uid)
            return self._create_unlocked(address, now), True

    def create(self, address: str) -> str:
        """Mint a new user for address without looking up an existing one."""
        with self._lock:
            return self._create_unlocked(address, self._clock())

    def ensure_user(self, user_id: str, address: str = "") -> bool:
        """Register a client-supplied user_id if unknown. Returns True when created."""
        now = self._clock()
        number = numeric_id(user_id)
        with self._lock:
            rec = self._users.get(user_id)
            if rec is not None:
                rec["last_seen"] = now
                return False
            if number is not None and number >= self._next_id:
                self._next_id = number + 1
            self._users[user_id] = new_user_record(user_id, address, now)
            if address:
                self._by_address.setdefault(address, user_id)
            self._dirty = self.durable
            return True

    # ── Mutations ───────────────────────────────────────────────────────

    def record_step_value(self, user_id: str, step: str, value: str) -> None:
        with self._lock:
            rec = self._users.get(user_id)
            if rec is None:
                return
            rec["step_values"][step] = value
            self._dirty = self.durable

    def record_step_status(self, user_id: str, step: str, entry: StatusEntry) -> bool:
        """Mirror a status entry. An entry older than the stored one is ignored."""
        with self._lock:
            rec = self._users.get(user_id)
            if rec is None:
                return False
            current = rec["step_statuses"].get(step)
            if current is not None and current.get("updated_at", 0) > entry["updated_at"]:
                return False
            rec["step_statuses"][step] = dict(entry)
            self._dirty = self.durable
            return True

    def forget_step_statuses(self, keys: list[tuple[str, str]]) -> None:
        with self._lock:
            for user_id, step in keys:
                rec = self._users.get(user_id)
                if rec is not None and rec["step_statuses"].pop(step, None) is not None:
                    self._dirty = self.durable

    def statuses(self) -> list[tuple[str, str, StatusEntry]]:
        """All persisted (user_id, step, entry) triples, for hydrating the status store."""
        with self._lock:
            return [
                (uid, step, dict(entry))
                for uid, rec in self._users.items()
                for step, entry in rec.get("step_statuses", {}).items()
                if isinstance(entry, dict)
            ]

    def evict_idle(self, max_age: float) -> int:
        """Remove users not seen for max_age seconds. Returns how many were removed."""
        cutoff = self._clock() - max_age
        with self._lock:
            expired = [uid for uid, rec in self._users.items() if rec["last_seen"] < cutoff]
            for uid in expired:
                self._drop_unlocked(uid)
            if expired:
                self._dirty = self.durable
        return len(expired)

    # ── Internals ───────────────────────────────────────────────────────

    def _create_unlocked(self, address: str, now: float) -> str:
        uid = str(self._next_id)
        while uid in self._users:
            self._next_id += 1
            uid = str(self._next_id)
        self._next_id += 1
        self._users[uid] = new_user_record(uid, address, now)
        self._by_address[address] = uid
        self._dirty = self.durable
        return uid

    def _drop_unlocked(self, uid: str) -> None:
        rec = self._users.pop(uid, None)
        if rec and self._by_address.get(rec["address"]) == uid:
            del self._by_address[rec["address"]]

    def _write_file(self, text: str) -> bool:
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=self.path.parent,
                prefix=f".{self.path.name}.", suffix=".tmp", delete=False,
            ) as f:
                tmp_name = f.name
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
            return True
        except OSError as e:
            logger.error("Failed to persist user directory to %s: %s", self.path, e)
            return False
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass


def _copy_record(rec: UserRecord) -> UserRecord:
    copied = dict(rec)
    copied["step_values"] = dict(rec["step_values"])
    copied["step_statuses"] = {k: dict(v) for k, v in rec["step_statuses"].items()}
    return copied
