"""Decision poller — turns operator button presses into status updates.

A single background task walks an explicit state machine:

    idle → checking → draining → polling ─(409 conflict)→ backing_off → checking …

* checking:    getMe must succeed; otherwise the start sequence (check + drain)
               is retried after a fixed delay.
* draining:    getUpdates(offset=-1) so presses queued before this start are
               skipped instead of replayed.
* polling:     getUpdates(offset=last+1) every tick; each update advances the
               marker and callback queries carrying a decision payload are
               applied to the status store.
* backing_off: another consumer holds the long poll. Linear backoff, and a
               longer cooldown after too many consecutive conflicts.

Errors other than a conflict are logged and the next tick proceeds. Anything
unexpected that escapes the start sequence is logged and the sequence is
restarted after the start retry delay.
"""

import asyncio
import contextlib
import logging
from typing import Any, Awaitable, Callable, Literal, Optional

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, wait_fixed

from notify.telegram import TelegramClient, TelegramConflictError, TelegramError
from relay.payload import decode_decision
from stores.status_store import StatusStore

logger = logging.getLogger(__name__)

PollerState = Literal["idle", "checking", "draining", "polling", "backing_off", "stopped"]

IDLE: PollerState = "idle"
CHECKING: PollerState = "checking"
DRAINING: PollerState = "draining"
POLLING: PollerState = "polling"
BACKING_OFF: PollerState = "backing_off"
STOPPED: PollerState = "stopped"


def _is_start_failure(exc: BaseException) -> bool:
    """Start-up errors worth a fixed-delay retry. Conflicts go through backoff instead."""
    if isinstance(exc, TelegramConflictError):
        return False
    return isinstance(exc, (TelegramError, httpx.HTTPError))


class DecisionPoller:
    def __init__(
        self,
        client: TelegramClient,
        status_store: StatusStore,
        *,
        interval: float = 0.5,
        poll_timeout: int = 1,
        start_retry_delay: float = 10.0,
        conflict_backoff: float = 5.0,
        conflict_max_retries: int = 5,
        conflict_cooldown: float = 60.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client = client
        self.status_store = status_store
        self.interval = interval
        self.poll_timeout = poll_timeout
        self.start_retry_delay = start_retry_delay
        self.conflict_backoff = conflict_backoff
        self.conflict_max_retries = conflict_max_retries
        self.conflict_cooldown = conflict_cooldown
        self._sleep = sleep

        self.state: PollerState = IDLE
        self.last_update_id = 0
        self.conflict_count = 0
        self._task: Optional[asyncio.Task] = None
        self._stopping = False

    # ── Lifecycle ───────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """Spawn the poll task. A second start while one is alive is a no-op."""
        if self.running:
            logger.debug("Decision poller already running (state=%s)", self.state)
            return False
        self._stopping = False
        self._task = asyncio.get_running_loop().create_task(self.run(), name="decision-poller")
        return True

    async def stop(self) -> None:
        """Cancel the poll task and wait for it; no status writes happen afterwards."""
        self._stopping = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self.state = STOPPED
        logger.info("Decision poller stopped")

    def snapshot(self) -> dict:
        return {
            "state": self.state,
            "running": self.running,
            "last_update_id": self.last_update_id,
            "conflict_count": self.conflict_count,
        }

    # ── State machine ───────────────────────────────────────────────────

    async def run(self) -> None:
        try:
            while not self._stopping:
                try:
                    await self._start_sequence()
                    await self._poll_loop()
                except TelegramConflictError as e:
                    delay = self.register_conflict()
                    self.state = BACKING_OFF
                    logger.warning("Telegram getUpdates conflict (%s); restarting in %.1fs", e.description, delay)
                    await self._sleep(delay)
                except Exception:
                    self.state = BACKING_OFF
                    logger.exception("Decision poller failed; restarting in %.0fs", self.start_retry_delay)
                    await self._sleep(self.start_retry_delay)
        finally:
            self.state = STOPPED

    def register_conflict(self) -> float:
        """
        Count a conflict and return how long to back off.
        Linear in the number of consecutive conflicts; once the limit is hit the
        cooldown is used and the counter starts over.
        """
        self.conflict_count += 1
        if self.conflict_count >= self.conflict_max_retries:
            logger.warning("%d consecutive polling conflicts; cooling down for %.0fs",
                           self.conflict_count, self.conflict_cooldown)
            self.conflict_count = 0
            return self.conflict_cooldown
        return self.conflict_backoff * self.conflict_count

    async def _start_sequence(self) -> None:
        async for attempt in AsyncRetrying(
            wait=wait_fixed(self.start_retry_delay),
            retry=retry_if_exception(_is_start_failure),
            before_sleep=self._log_start_retry,
            sleep=self._sleep,
        ):
            with attempt:
                await self._check_availability()
                await self._drain()

    def _log_start_retry(self, retry_state: RetryCallState) -> None:
        logger.error(
            "Telegram unavailable: %r. Retrying start in %.0fs (attempt %d)",
            retry_state.outcome.exception(),
            retry_state.next_action.sleep,
            retry_state.attempt_number,
        )

    async def _check_availability(self) -> None:
        self.state = CHECKING
        me = await self.client.get_me()
        username = me.get("username") if isinstance(me, dict) else None
        logger.info("Telegram bot %s reachable", f"@{username}" if username else "(unnamed)")

    async def _drain(self) -> None:
        self.state = DRAINING
        updates = await self.client.get_updates(offset=-1, timeout=0)
        for update in updates:
            self._advance(update)
        logger.debug("Drained stale updates up to id %d", self.last_update_id)

    async def _poll_loop(self) -> None:
        self.state = POLLING
        logger.info("Polling Telegram for decisions every %.1fs", self.interval)
        while not self._stopping:
            await self.poll_once()
            await self._sleep(self.interval)

    # ── One tick ────────────────────────────────────────────────────────

    async def poll_once(self) -> int:
        """Fetch updates newer than the marker and apply decisions. Returns how many applied."""
        try:
            updates = await self.client.get_updates(offset=self.last_update_id + 1, timeout=self.poll_timeout)
        except TelegramConflictError:
            raise
        except (TelegramError, httpx.HTTPError, ValueError) as e:
            logger.warning("Telegram polling error: %s", e)
            return 0
        except Exception:
            logger.exception("Unexpected Telegram polling error")
            return 0

        self.conflict_count = 0
        applied = 0
        for update in updates:
            if self._stopping:
                break
            self._advance(update)
            try:
                if self._apply(update):
                    applied += 1
            except Exception:
                logger.exception("Could not apply update %r", update)
        return applied

    def _advance(self, update: Any) -> None:
        update_id = update.get("update_id") if isinstance(update, dict) else None
        if isinstance(update_id, int) and update_id > self.last_update_id:
            self.last_update_id = update_id

    def _apply(self, update: Any) -> bool:
        callback = update.get("callback_query") if isinstance(update, dict) else None
        if not isinstance(callback, dict):
            return False

        decision = decode_decision(callback.get("data"))
        if decision is None:
            logger.debug("Ignoring callback with data %r", callback.get("data"))
            return False

        applied = self.status_store.set_decision(decision.user_id, decision.step, decision.approved)
        if applied:
            logger.info("Status for user %s, step %s: %s", decision.user_id, decision.step, decision.action)
        return applied
