"""
Key-value storage for the chat backend.

Every component receives a store explicitly; nothing here is a module-level
singleton. Two backends share one small interface:

- MemoryKVStore: in-process dict with per-key TTL. Used for local runs and tests.
- MongoKVStore: one MongoDB collection, one document per key, expiry enforced by
  a TTL index on `expiresAt` (and filtered on read, since the TTL monitor only
  runs periodically).

The store offers per-key atomic get/put/delete only. There are no multi-key
transactions and no conditional writes.
"""

import json
import logging
import os
import re
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from errors import UpstreamStoreError

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")
KV_COLLECTION = os.getenv("KV_COLLECTION", "kv")


class KVStore(Protocol):
    def get(self, key: str) -> Optional[bytes]: ...

    def put(self, key: str, value: bytes, ttl_seconds: Optional[int] = None) -> None: ...

    def delete(self, key: str) -> None: ...

    def list(self, prefix: str) -> List[str]: ...


class MemoryKVStore:
    """Thread-safe in-memory store. Expired keys disappear on the next access."""

    backend = "memory"

    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._data: Dict[str, Tuple[bytes, Optional[float]]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str, now: float) -> Optional[bytes]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= now:
            del self._data[key]
            return None
        return value

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._live(key, self._clock())

    def put(self, key: str, value: bytes, ttl_seconds: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds is not None else None
        with self._lock:
            self._data[key] = (bytes(value), expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def list(self, prefix: str) -> List[str]:
        with self._lock:
            now = self._clock()
            keys = [k for k in list(self._data) if k.startswith(prefix)]
            return sorted(k for k in keys if self._live(k, now) is not None)


class MongoKVStore:
    backend = "mongodb"

    def __init__(self, collection: Collection, clock: Clock = time.time):
        self._collection = collection
        self._clock = clock
        try:
            collection.create_index("expiresAt", expireAfterSeconds=0)
        except PyMongoError as e:
            raise UpstreamStoreError(f"Could not prepare key-value collection: {e}")

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), timezone.utc)

    def _expired(self, doc: Dict[str, Any], now: datetime) -> bool:
        expires = doc.get("expiresAt")
        if expires is None:
            return False
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return expires <= now

    def get(self, key: str) -> Optional[bytes]:
        try:
            doc = self._collection.find_one({"_id": key})
        except PyMongoError as e:
            raise UpstreamStoreError(f"Store read failed for {key}: {e}")
        if doc is None or self._expired(doc, self._now()):
            return None
        return bytes(doc["value"])

    def put(self, key: str, value: bytes, ttl_seconds: Optional[int] = None) -> None:
        doc = {"value": bytes(value), "expiresAt": None}
        if ttl_seconds is not None:
            doc["expiresAt"] = datetime.fromtimestamp(self._clock() + ttl_seconds, timezone.utc)
        try:
            self._collection.replace_one({"_id": key}, doc, upsert=True)
        except PyMongoError as e:
            raise UpstreamStoreError(f"Store write failed for {key}: {e}")

    def delete(self, key: str) -> None:
        try:
            self._collection.delete_one({"_id": key})
        except PyMongoError as e:
            raise UpstreamStoreError(f"Store delete failed for {key}: {e}")

    def list(self, prefix: str) -> List[str]:
        now = self._now()
        try:
            docs = self._collection.find(
                {"_id": {"$regex": "^" + re.escape(prefix)}},
                {"_id": 1, "expiresAt": 1},
            )
            return sorted(d["_id"] for d in docs if not self._expired(d, now))
        except PyMongoError as e:
            raise UpstreamStoreError(f"Store scan failed for prefix {prefix}: {e}")


def create_store(clock: Clock = time.time) -> KVStore:
    """Build the store configured by DATABASE_URL / DATABASE_NAME, else in-memory."""
    if DATABASE_URL and DATABASE_NAME:
        client = MongoClient(DATABASE_URL, tz_aware=True)
        logger.info(f"Using MongoDB key-value store: {DATABASE_NAME}.{KV_COLLECTION}")
        return MongoKVStore(client[DATABASE_NAME][KV_COLLECTION], clock=clock)
    logger.info("DATABASE_URL/DATABASE_NAME not set, using in-memory key-value store")
    return MemoryKVStore(clock=clock)


# ---------- JSON documents ----------

def get_document(store: KVStore, key: str) -> Optional[Any]:
    raw = store.get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError as e:
        logger.warning(f"Malformed document at {key}: {e}")
        raise UpstreamStoreError(f"Malformed data stored at {key}")


def put_document(store: KVStore, key: str, data: Any, ttl_seconds: Optional[int] = None) -> None:
    payload = json.dumps(data, ensure_ascii=False).encode("utf-8")
    store.put(key, payload, ttl_seconds=ttl_seconds)
