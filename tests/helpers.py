"""Shared test helpers."""

import hashlib
import re
from datetime import datetime, timezone
from typing import Optional

from pymongo.errors import ServerSelectionTimeoutError

from message_log import new_message_id
from rooms import PUBLIC_ROOM
from schemas import Message

START = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc).timestamp()


class FakeClock:
    """Settable epoch-seconds clock shared by the store and the app."""

    def __init__(self, now: float = START):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    @property
    def ms(self) -> int:
        return int(self.now * 1000)


def client_hash(password: str) -> str:
    return hashlib.sha256(password.encode()).hexdigest()


def make_message(
    sender: str,
    body: str,
    sent_at: int,
    room_id: str = PUBLIC_ROOM,
    recipient: Optional[str] = None,
) -> Message:
    return Message(
        id=new_message_id(sender, sent_at),
        senderId=sender,
        recipientId=recipient,
        roomId=room_id,
        body=body,
        sentAt=sent_at,
    )


class FakeCollection:
    """Just enough of pymongo's Collection for MongoKVStore: no TTL monitor runs."""

    def __init__(self):
        self.docs = {}
        self.indexes = []

    def create_index(self, key, **kwargs):
        self.indexes.append((key, kwargs))
        return f"{key}_1"

    def find_one(self, query):
        doc = self.docs.get(query["_id"])
        return dict(doc) if doc is not None else None

    def replace_one(self, query, doc, upsert=False):
        self.docs[query["_id"]] = {"_id": query["_id"], **doc}

    def delete_one(self, query):
        self.docs.pop(query["_id"], None)

    def find(self, query, projection=None):
        pattern = re.compile(query["_id"]["$regex"])
        for key, doc in list(self.docs.items()):
            if pattern.search(key):
                if projection:
                    yield {k: v for k, v in doc.items() if k in projection}
                else:
                    yield dict(doc)


class FailingCollection:
    """Collection whose every call fails like an unreachable server."""

    def __init__(self, fail_on_index: bool = False):
        self.fail_on_index = fail_on_index

    def create_index(self, key, **kwargs):
        if self.fail_on_index:
            raise ServerSelectionTimeoutError("no servers available")

    def _fail(self, *args, **kwargs):
        raise ServerSelectionTimeoutError("no servers available")

    find_one = replace_one = delete_one = find = _fail
