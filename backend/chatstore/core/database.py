from fastapi import Request

from chatstore.core.config import Settings, settings
from chatstore.core.connection import ClientFactory, RedisPool
from chatstore.store.adapter import RedisAdapter
from chatstore.store.cache import MemoryCache
from chatstore.store.conversation import ConversationStore
from chatstore.store.message import MessageStore


class Database:
    """Everything that shares the Redis connection, wired once per process."""

    def __init__(self, config: Settings = settings, client_factory: ClientFactory | None = None):
        self.pool = RedisPool.from_settings(config, client_factory=client_factory)
        self.cache = MemoryCache(
            default_ttl=config.cache_ttl_seconds,
            sweep_interval=config.cache_sweep_interval,
        )
        self.messages = MessageStore(
            self.pool,
            self.cache,
            compress=config.compress_content,
            compression_threshold=config.compression_threshold,
        )
        self.conversations = ConversationStore(self.pool, self.cache)
        self.adapter = RedisAdapter(self.messages, self.conversations)

    def start(self) -> None:
        self.cache.start()

    async def close(self) -> None:
        await self.cache.stop()
        self.cache.clear()
        await self.pool.close()


def init_db(config: Settings = settings) -> Database:
    return Database(config)


def get_db(request: Request) -> Database:
    return request.app.state.db


def get_adapter(request: Request) -> RedisAdapter:
    return request.app.state.db.adapter
