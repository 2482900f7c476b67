"""
Stored document schemas for the chat backend

Each model is serialized as JSON into the key-value store:
- User       -> "user:<username>"
- Message    -> element of "messages:<roomId>:<YYYY-MM-DD>"
- RoomRecord -> "room:<roomId>"

Timestamps are epoch milliseconds.
"""

from pydantic import BaseModel, Field
from typing import List, Optional

USERNAME_PATTERN = r"^[A-Za-z0-9_-]{2,20}$"


class User(BaseModel):
    username: str = Field(..., pattern=USERNAME_PATTERN)
    passwordHash: str = Field(..., description="Server-side hash of the client password hash")
    createdAt: int
    lastActive: Optional[int] = None


class Message(BaseModel):
    id: str = Field(..., description="<sender>_<sentAt>_<random suffix>")
    senderId: str
    recipientId: Optional[str] = None
    roomId: str
    body: str
    sentAt: int


class LastMessage(BaseModel):
    content: str
    senderId: str
    time: int


class RoomRecord(BaseModel):
    id: str
    participants: List[str] = Field(..., min_length=2, max_length=2)
    createdAt: int
    lastMessage: Optional[LastMessage] = None


class RoomSummary(RoomRecord):
    displayName: str
    # Unread tracking is not implemented; always 0
    unreadCount: int = 0


# ---------- Requests ----------

class AuthRequest(BaseModel):
    username: str
    password: str


class PresenceRequest(BaseModel):
    username: str


class SendMessageRequest(BaseModel):
    # "from" is a keyword, so the field is aliased
    sender: str = Field(..., alias="from")
    message: str
    to: Optional[str] = None
