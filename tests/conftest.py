import pytest
from fastapi.testclient import TestClient

from accounts import AccountStore
from database import MemoryKVStore
from main import create_app
from message_log import MessageLog
from presence import PresenceTracker
from room_directory import RoomDirectory
from tests.helpers import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock) -> MemoryKVStore:
    return MemoryKVStore(clock=clock)


@pytest.fixture
def presence(store) -> PresenceTracker:
    return PresenceTracker(store, ttl_seconds=300)


@pytest.fixture
def message_log(store) -> MessageLog:
    return MessageLog(store)


@pytest.fixture
def directory(store) -> RoomDirectory:
    return RoomDirectory(store)


@pytest.fixture
def accounts(store) -> AccountStore:
    return AccountStore(store)


@pytest.fixture
def client(store, clock):
    app = create_app(store=store, clock=clock)
    with TestClient(app) as c:
        yield c
