"""
Day-partitioned message log.

Messages for one room on one UTC calendar day live in a single JSON list at
"messages:<roomId>:<YYYY-MM-DD>". A partition holds at most `max_messages`
entries (oldest dropped first) and expires `retention_days` after its last write.

Appends are read-modify-write without a lock or conditional put, because the
store has neither. Two writers hitting the same room and day at the same moment
can each read the same list, and the later put wins: the earlier writer's
message is lost. The loss is bounded to the messages that overlapped in that
window and never corrupts the partition, which is always a whole JSON list
written by a single put.
"""

import logging
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Mapping, Optional

from database import KVStore, get_document, put_document
from errors import UpstreamStoreError
from schemas import Message

logger = logging.getLogger(__name__)

MESSAGES_PREFIX = "messages:"
DEFAULT_MAX_MESSAGES = 2000
DEFAULT_RETENTION_DAYS = 90
DEFAULT_WINDOW_DAYS = 7
DEFAULT_LIMIT = 200

_ID_ALPHABET = string.ascii_lowercase + string.digits


def partition_day(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, timezone.utc).strftime("%Y-%m-%d")


def partition_key(room_id: str, day: str) -> str:
    return f"{MESSAGES_PREFIX}{room_id}:{day}"


def new_message_id(sender: str, sent_at: int) -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"{sender}_{sent_at}_{suffix}"


class MessageLog:
    def __init__(
        self,
        store: KVStore,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        retention_days: int = DEFAULT_RETENTION_DAYS,
    ):
        self._store = store
        self.max_messages = max_messages
        self.retention_seconds = retention_days * 24 * 60 * 60

    def read_partition(self, room_id: str, day: str) -> List[Message]:
        key = partition_key(room_id, day)
        data = get_document(self._store, key)
        if data is None:
            return []
        if not isinstance(data, list):
            logger.warning(f"Partition {key} is not a list")
            raise UpstreamStoreError(f"Malformed data stored at {key}")
        try:
            return [Message.model_validate(m) for m in data]
        except ValueError as e:
            logger.warning(f"Partition {key} holds an invalid message: {e}")
            raise UpstreamStoreError(f"Malformed data stored at {key}")

    def append(self, room_id: str, message: Message) -> str:
        day = partition_day(message.sentAt)
        messages = self.read_partition(room_id, day)
        messages.append(message)
        overflow = len(messages) - self.max_messages
        if overflow > 0:
            messages = messages[overflow:]
            logger.debug(f"Evicted {overflow} oldest message(s) from {room_id} on {day}")
        put_document(
            self._store,
            partition_key(room_id, day),
            [m.model_dump() for m in messages],
            ttl_seconds=self.retention_seconds,
        )
        return message.id

    def fetch_incremental(
        self,
        room_ids: Iterable[str],
        cursors: Mapping[str, Optional[str]],
        now: int,
    ) -> Dict[str, List[Message]]:
        """
        New messages per room from today's partition only.

        A cursor that is missing, or no longer present in today's partition
        (evicted, or from an earlier day), yields the whole partition.
        """
        today = partition_day(now)
        result: Dict[str, List[Message]] = {}
        for room_id in room_ids:
            messages = self.read_partition(room_id, today)
            cursor = cursors.get(room_id)
            if cursor:
                for index, message in enumerate(messages):
                    if message.id == cursor:
                        messages = messages[index + 1:]
                        break
                else:
                    logger.debug(f"Cursor {cursor} not found in {room_id}, returning full partition")
            result[room_id] = messages
        return result

    def fetch_window(
        self,
        room_id: str,
        now: int,
        window_days: int = DEFAULT_WINDOW_DAYS,
        limit: int = DEFAULT_LIMIT,
    ) -> List[Message]:
        """The last `limit` messages of the last `window_days` days, oldest first."""
        start = datetime.fromtimestamp(now / 1000, timezone.utc)
        messages: List[Message] = []
        for offset in range(window_days):
            day = (start - timedelta(days=offset)).strftime("%Y-%m-%d")
            messages.extend(self.read_partition(room_id, day))
        messages.sort(key=lambda m: m.sentAt)
        if limit <= 0:
            return []
        return messages[-limit:]
