"""Service assembly — builds the relay components and owns their lifecycle."""

import logging
from dataclasses import dataclass
from typing import Optional

import config
from notify.telegram import TelegramClient
from notify.transport import NotificationTransport
from relay.coordinator import SubmissionCoordinator
from stores.directory import UserDirectory
from stores.identity import IdentityResolver
from stores.status_store import StatusStore
from workers.decision_poller import DecisionPoller
from workers.persister import DirectoryPersister
from workers.sweeper import Sweeper

logger = logging.getLogger(__name__)


@dataclass
class RelayServices:
    directory: UserDirectory
    identity: IdentityResolver
    status_store: StatusStore
    client: TelegramClient
    transport: NotificationTransport
    poller: DecisionPoller
    sweeper: Sweeper
    persister: DirectoryPersister
    coordinator: SubmissionCoordinator

    async def start(self, background: bool = True) -> None:
        """Load state, then start the background workers."""
        self.directory.init()
        self.status_store.init()
        if background:
            self.poller.start()
            self.sweeper.start()
            self.persister.start()

    async def close(self) -> None:
        """Stop background work first so nothing writes after shutdown."""
        await self.poller.stop()
        await self.sweeper.stop()
        await self.persister.stop()
        await self.transport.aclose()
        await self.client.aclose()
        self.status_store.close()


def build_services(client: Optional[TelegramClient] = None, durable: Optional[bool] = None) -> RelayServices:
    """
    Wire every component from config.
    Pass a client to swap the Telegram backend (tests use a fake).
    """
    durable = config.is_durable() if durable is None else durable

    directory = UserDirectory(config.DATA_PATH if durable else None)
    # Durable records live for the whole process; cache mode uses a sliding TTL.
    identity = IdentityResolver(directory, ttl_seconds=None if durable else config.USER_TTL_SEC)
    status_store = StatusStore(config.STATUS_TTL_SEC, directory=directory)

    client = client or TelegramClient(
        config.TELEGRAM_TOKEN,
        api_base=config.TELEGRAM_API_BASE,
        timeout=config.HTTP_TIMEOUT_SEC,
    )
    transport = NotificationTransport(client, config.TELEGRAM_CHAT_ID)

    poller = DecisionPoller(
        client,
        status_store,
        interval=config.POLL_INTERVAL_SEC,
        poll_timeout=config.POLL_TIMEOUT_SEC,
        start_retry_delay=config.POLLER_START_RETRY_SEC,
        conflict_backoff=config.CONFLICT_BACKOFF_SEC,
        conflict_max_retries=config.CONFLICT_MAX_RETRIES,
        conflict_cooldown=config.CONFLICT_COOLDOWN_SEC,
    )

    sweeper = Sweeper(config.SWEEP_INTERVAL_SEC)
    sweeper.register_task("statuses", status_store.sweep)
    sweeper.register_task("users", identity.sweep)

    persister = DirectoryPersister(directory, config.PERSIST_INTERVAL_SEC)

    coordinator = SubmissionCoordinator(
        identity,
        directory,
        status_store,
        transport,
        blocking_steps=config.BLOCKING_STEPS,
    )

    logger.info("Relay services built (storage=%s)", "file" if durable else "memory")
    return RelayServices(
        directory=directory,
        identity=identity,
        status_store=status_store,
        client=client,
        transport=transport,
        poller=poller,
        sweeper=sweeper,
        persister=persister,
        coordinator=coordinator,
    )
