"""Identity resolver — maps a client address to a stable user id."""

import logging
from typing import Optional

from stores.directory import UserDirectory

logger = logging.getLogger(__name__)

_MAPPED_V4_PREFIX = "::ffff:"


def normalize_address(address: Optional[str]) -> str:
    """Strip the IPv4-mapped IPv6 prefix so 1.2.3.4 and ::ffff:1.2.3.4 match."""
    address = (address or "").strip()
    if address.lower().startswith(_MAPPED_V4_PREFIX):
        return address[len(_MAPPED_V4_PREFIX):]
    return address


class IdentityResolver:
    """
    Same address → same user id while its record is retained.

    ttl_seconds is a sliding idle window (cache mode); pass None to keep
    records for the whole process lifetime (durable mode).
    """

    def __init__(self, directory: UserDirectory, ttl_seconds: Optional[float] = None):
        self.directory = directory
        self.ttl_seconds = ttl_seconds

    def resolve(self, address: str) -> str:
        address = normalize_address(address)
        try:
            user_id, created = self.directory.find_or_create(address, max_age=self.ttl_seconds)
        except Exception:
            logger.exception("Identity lookup failed for %s; treating as new user", address)
            user_id, created = self.directory.create(address), True

        if created:
            logger.info("New user #%s from %s", user_id, address)
        return user_id

    def sweep(self) -> int:
        """Evict idle records (cache mode only)."""
        if self.ttl_seconds is None:
            return 0
        return self.directory.evict_idle(self.ttl_seconds)
