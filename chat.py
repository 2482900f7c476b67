"""
Chat operations built from the storage components.

Send: presence gate -> room id -> message log append -> room summary upsert.
Fetch: access check (public, or membership via the room directory) -> message log read.

The append and the room summary are separate keys, so they are only eventually
consistent with each other.
"""

import logging
from typing import Dict, List, Mapping, Optional, Set, Tuple

from accounts import AccountStore, validate_username
from errors import AuthError, ForbiddenError, ValidationError
from message_log import DEFAULT_LIMIT, DEFAULT_WINDOW_DAYS, MessageLog, new_message_id
from presence import PresenceTracker
from room_directory import RoomDirectory
from rooms import PUBLIC_ROOM, canonical_room_id, is_public_room
from schemas import LastMessage, Message, RoomSummary, User

logger = logging.getLogger(__name__)

DEFAULT_MAX_MESSAGE_LENGTH = 1000


class ChatService:
    def __init__(
        self,
        accounts: AccountStore,
        presence: PresenceTracker,
        messages: MessageLog,
        rooms: RoomDirectory,
        max_message_length: int = DEFAULT_MAX_MESSAGE_LENGTH,
        window_days: int = DEFAULT_WINDOW_DAYS,
        history_limit: int = DEFAULT_LIMIT,
    ):
        self.accounts = accounts
        self.presence = presence
        self.messages = messages
        self.rooms = rooms
        self.max_message_length = max_message_length
        self.window_days = window_days
        self.history_limit = history_limit

    # ---------- Auth ----------

    def register(self, username: str, password: str, now: int) -> User:
        user = self.accounts.register(username, password, now)
        self.presence.heartbeat(username, now)
        return user

    def login(self, username: str, password: str, now: int) -> User:
        user = self.accounts.login(username, password, now)
        self.presence.heartbeat(username, now)
        return user

    def authenticate(self, username: str, password: str, now: int) -> Tuple[User, bool]:
        user, created = self.accounts.authenticate(username, password, now)
        self.presence.heartbeat(username, now)
        return user, created

    # ---------- Presence ----------

    def heartbeat(self, username: str, now: int) -> None:
        validate_username(username)
        if self.accounts.get_user(username) is None:
            raise AuthError("Unknown user")
        self.presence.heartbeat(username, now)

    def go_offline(self, username: str) -> None:
        validate_username(username)
        self.presence.go_offline(username)

    def active_users(self) -> List[str]:
        return sorted(self.presence.list_active())

    # ---------- Messages ----------

    def send(self, sender: str, body: str, recipient: Optional[str], now: int) -> Message:
        if not sender or not body or not body.strip():
            raise ValidationError("Sender and message are required")
        validate_username(sender)
        private = bool(recipient)
        if private:
            validate_username(recipient)
            if recipient == sender:
                raise ValidationError("Cannot send a private message to yourself")
            if self.accounts.get_user(recipient) is None:
                raise ValidationError(f"Unknown recipient: {recipient}")

        if not self.presence.is_active(sender):
            raise AuthError("User is not logged in", status_code=403)
        self.presence.heartbeat(sender, now)

        room_id = canonical_room_id(sender, recipient) if private else PUBLIC_ROOM
        message = Message(
            id=new_message_id(sender, now),
            senderId=sender,
            recipientId=recipient if private else None,
            roomId=room_id,
            body=body[:self.max_message_length],
            sentAt=now,
        )
        self.messages.append(room_id, message)
        if private:
            self.rooms.upsert_private_room(
                sender,
                recipient,
                LastMessage(content=message.body, senderId=sender, time=now),
                now,
            )
        logger.info(f"Message {message.id} from {sender} stored in room {room_id}")
        return message

    def _check_access(self, room_id: str, user: Optional[str]) -> None:
        if is_public_room(room_id):
            return
        if not user or not self.rooms.is_member(room_id, user):
            logger.warning(f"Denied {user or 'anonymous'} access to room {room_id}")
            raise ForbiddenError("No access to this room")

    def fetch_incremental(
        self,
        room_ids: Set[str],
        cursors: Mapping[str, Optional[str]],
        user: Optional[str],
        now: int,
    ) -> Dict[str, List[Message]]:
        if not room_ids:
            raise ValidationError("roomIds is required")
        for room_id in room_ids:
            self._check_access(room_id, user)
        return self.messages.fetch_incremental(sorted(room_ids), cursors, now)

    def fetch_window(self, user: str, room_id: str, now: int) -> List[Message]:
        if not user:
            raise ValidationError("User is required")
        self._check_access(room_id, user)
        return self.messages.fetch_window(room_id, now, window_days=self.window_days, limit=self.history_limit)

    # ---------- Rooms ----------

    def list_rooms(self, user: str) -> List[RoomSummary]:
        if not user:
            raise ValidationError("User is required")
        return self.rooms.list_rooms_for(user)
