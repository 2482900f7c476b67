"""
Presence tracking on expiring keys.

A user is active exactly while "presence:<username>" exists. The stored value
(last heartbeat, epoch ms) is informational only; the key's TTL decides.
"""

import logging
from typing import Set

from database import KVStore

logger = logging.getLogger(__name__)

PRESENCE_PREFIX = "presence:"
DEFAULT_PRESENCE_TTL_SECONDS = 300


def presence_key(username: str) -> str:
    return f"{PRESENCE_PREFIX}{username}"


class PresenceTracker:
    def __init__(self, store: KVStore, ttl_seconds: int = DEFAULT_PRESENCE_TTL_SECONDS):
        self._store = store
        self.ttl_seconds = ttl_seconds

    def heartbeat(self, username: str, now: int) -> None:
        self._store.put(presence_key(username), str(now).encode("utf-8"), ttl_seconds=self.ttl_seconds)
        logger.debug(f"Presence refreshed for {username}")

    def is_active(self, username: str) -> bool:
        return self._store.get(presence_key(username)) is not None

    def go_offline(self, username: str) -> None:
        self._store.delete(presence_key(username))
        logger.debug(f"Presence cleared for {username}")

    def list_active(self) -> Set[str]:
        """Snapshot of active users. Any of them may expire right after the scan."""
        return {key[len(PRESENCE_PREFIX):] for key in self._store.list(PRESENCE_PREFIX)}
