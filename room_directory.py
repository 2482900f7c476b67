"""Private room records and their last-message summaries."""

import logging
from typing import List, Optional

from database import KVStore, get_document, put_document
from errors import UpstreamStoreError
from rooms import canonical_room_id, is_public_room
from schemas import LastMessage, RoomRecord, RoomSummary

logger = logging.getLogger(__name__)

ROOM_PREFIX = "room:"
DEFAULT_RETENTION_DAYS = 90
PREVIEW_LENGTH = 50


def room_key(room_id: str) -> str:
    return f"{ROOM_PREFIX}{room_id}"


class RoomDirectory:
    def __init__(self, store: KVStore, retention_days: int = DEFAULT_RETENTION_DAYS):
        self._store = store
        self.retention_seconds = retention_days * 24 * 60 * 60

    def get_room(self, room_id: str) -> Optional[RoomRecord]:
        data = get_document(self._store, room_key(room_id))
        if data is None:
            return None
        try:
            return RoomRecord.model_validate(data)
        except ValueError as e:
            logger.warning(f"Room record {room_id} is invalid: {e}")
            raise UpstreamStoreError(f"Malformed data stored at {room_key(room_id)}")

    def upsert_private_room(self, user_a: str, user_b: str, preview: LastMessage, now: int) -> RoomRecord:
        """
        Create or refresh the room for a pair of users.

        createdAt survives updates; lastMessage is whatever the latest caller wrote.
        """
        room_id = canonical_room_id(user_a, user_b)
        existing = self.get_room(room_id)
        record = RoomRecord(
            id=room_id,
            participants=sorted([user_a, user_b]),
            createdAt=existing.createdAt if existing else now,
            lastMessage=LastMessage(
                content=preview.content[:PREVIEW_LENGTH],
                senderId=preview.senderId,
                time=preview.time,
            ),
        )
        put_document(self._store, room_key(room_id), record.model_dump(), ttl_seconds=self.retention_seconds)
        return record

    def is_member(self, room_id: str, username: str) -> bool:
        if is_public_room(room_id):
            return True
        room = self.get_room(room_id)
        return room is not None and username in room.participants

    def list_rooms_for(self, username: str) -> List[RoomSummary]:
        # Scans every room record; there is no per-user index.
        rooms: List[RoomSummary] = []
        for key in self._store.list(ROOM_PREFIX):
            room = self.get_room(key[len(ROOM_PREFIX):])
            if room is None or username not in room.participants:
                continue
            other = next((p for p in room.participants if p != username), username)
            rooms.append(RoomSummary(**room.model_dump(), displayName=other))
        rooms.sort(key=lambda r: r.lastMessage.time if r.lastMessage else 0, reverse=True)
        return rooms
