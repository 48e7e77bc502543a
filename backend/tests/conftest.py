"""Shared test fixtures for backend tests."""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import fakeredis
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from chatstore.core.config import Settings
from chatstore.core.connection import RedisPool
from chatstore.core.database import Database
from chatstore.store.adapter import RedisAdapter
from chatstore.store.cache import MemoryCache
from chatstore.store.conversation import ConversationStore
from chatstore.store.message import MessageStore


class TickingClock:
    """Wall clock stand-in that moves forward a millisecond on every read."""

    def __init__(self, start: datetime | None = None, step: timedelta = timedelta(milliseconds=1)):
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        self.now += self.step
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


@pytest.fixture
def fake_server():
    return fakeredis.FakeServer()


@pytest.fixture
def client_factory(fake_server):
    """Stand-in for Redis.from_url that hands out clients of one in-memory server."""

    def factory(url, **options):
        return fakeredis.FakeAsyncRedis(server=fake_server, decode_responses=True)

    return factory


@pytest.fixture
def clock():
    return TickingClock()


@pytest_asyncio.fixture
async def pool(client_factory):
    pool = RedisPool("redis://localhost:6379/0", client_factory=client_factory)
    yield pool
    await pool.close()


@pytest.fixture
def cache():
    return MemoryCache()


@pytest.fixture
def message_store(pool, cache, clock):
    return MessageStore(pool, cache, clock=clock)


@pytest.fixture
def conversation_store(pool, cache, clock):
    return ConversationStore(pool, cache, clock=clock)


@pytest.fixture
def adapter(message_store, conversation_store):
    return RedisAdapter(message_store, conversation_store)


@pytest_asyncio.fixture
async def redis(pool):
    """Direct handle on the fake backend, for inspecting raw keys."""
    return await pool.get_connection()


@pytest.fixture
def client(client_factory):
    """FastAPI TestClient backed by an in-memory Redis."""
    test_settings = Settings(redis_url="redis://localhost:6379/0")
    with patch("chatstore.main.init_db", lambda: Database(test_settings, client_factory=client_factory)):
        from chatstore.main import app

        with TestClient(app) as c:
            yield c


@pytest.fixture
def other_process(fake_server):
    """Blocking client on the same server, standing in for another writer."""
    return fakeredis.FakeRedis(server=fake_server, decode_responses=True)
