"""Redis connection pool: one shared client per process, created lazily and owned by the app lifespan."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable
from urllib.parse import urlsplit

from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ReadOnlyError
from redis.exceptions import TimeoutError as RedisTimeoutError

from chatstore.core.config import Settings, settings
from chatstore.core.errors import ConfigurationError, StoreConnectionError

logger = logging.getLogger(__name__)

ClientFactory = Callable[..., Redis]

# INFO fields surfaced by performance_stats()
_PERFORMANCE_FIELDS = {
    "used_memory_human": "memory_usage",
    "total_commands_processed": "commands_processed",
    "connected_clients": "connected_clients",
    "uptime_in_seconds": "uptime_seconds",
}


def _redact(url: str) -> str:
    """Strip credentials from a Redis URL before logging it."""
    parts = urlsplit(url)
    host = parts.hostname or "localhost"
    port = f":{parts.port}" if parts.port else ""
    return f"{parts.scheme}://{host}{port}{parts.path}"


class RedisPool:
    """Owns the single Redis client used by every store.

    Construct it once at startup, pass it to the stores and call ``close()`` at
    shutdown. The client is created on first use; concurrent callers arriving
    while the connection is being established all wait on the same attempt.
    """

    def __init__(
        self,
        url: str,
        *,
        connect_timeout: float = 5.0,
        max_retries: int = 3,
        backoff_base: float = 0.05,
        backoff_cap: float = 2.0,
        close_timeout: float = 5.0,
        client_factory: ClientFactory | None = None,
    ):
        self._url = url
        self._connect_timeout = connect_timeout
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._backoff_cap = backoff_cap
        self._close_timeout = close_timeout
        self._client_factory = client_factory or Redis.from_url
        self._client: Redis | None = None
        self._connecting: asyncio.Future | None = None

    @classmethod
    def from_settings(cls, config: Settings = settings, **kwargs: Any) -> "RedisPool":
        return cls(
            config.redis_url,
            connect_timeout=config.redis_connect_timeout,
            max_retries=config.redis_max_retries,
            backoff_base=config.redis_backoff_base,
            backoff_cap=config.redis_backoff_cap,
            close_timeout=config.redis_close_timeout,
            **kwargs,
        )

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    def _client_options(self) -> dict[str, Any]:
        return {
            "decode_responses": True,
            "socket_connect_timeout": self._connect_timeout,
            "socket_keepalive": True,
            "retry": Retry(
                ExponentialBackoff(cap=self._backoff_cap, base=self._backoff_base),
                self._max_retries,
            ),
            "retry_on_error": [RedisConnectionError, RedisTimeoutError],
        }

    async def get_connection(self) -> Redis:
        """Return the live client, connecting on first use."""
        if self._client is not None:
            return self._client

        if self._connecting is None:
            self._connecting = asyncio.ensure_future(self._connect())
        attempt = self._connecting
        try:
            return await asyncio.shield(attempt)
        finally:
            if self._connecting is attempt and attempt.done():
                self._connecting = None

    async def _connect(self) -> Redis:
        if not self._url:
            raise ConfigurationError("Redis URL not configured. Set CHATSTORE_REDIS_URL.")

        logger.info(f"Connecting to Redis at {_redact(self._url)}")
        client = self._client_factory(self._url, **self._client_options())
        try:
            await client.ping()
        except (RedisConnectionError, RedisTimeoutError, OSError) as e:
            logger.error(f"Redis connection failed: {e}")
            await self._force_disconnect(client)
            raise StoreConnectionError(f"Redis connection failed: {e}") from e

        self._client = client
        logger.info("Redis connection ready")
        return client

    @asynccontextmanager
    async def session(self) -> AsyncIterator[Redis]:
        """Yield the shared client, mapping backend failures onto store errors.

        A READONLY reply means we are talking to a replica after a failover, so
        the client is dropped and the next caller reconnects instead of the
        command being retried against the same node.
        """
        client = await self.get_connection()
        try:
            yield client
        except ReadOnlyError:
            logger.warning("Redis replied READONLY; forcing reconnect")
            await self.reset(reconnect=False)
            raise
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.error(f"Redis command failed after retries: {e}")
            raise StoreConnectionError(str(e)) from e

    async def health_check(self) -> bool:
        """PING the server. Never raises."""
        if self._client is None:
            return False
        try:
            return bool(await self._client.ping())
        except Exception as e:
            logger.error(f"Redis health check failed: {e}")
            return False

    async def server_info(self) -> dict[str, Any] | None:
        if self._client is None:
            return None
        try:
            return await self._client.info()
        except Exception as e:
            logger.error(f"Failed to read Redis server info: {e}")
            return None

    async def performance_stats(self) -> dict[str, Any] | None:
        info = await self.server_info()
        if info is None:
            return None
        return {name: info.get(field) for field, name in _PERFORMANCE_FIELDS.items()}

    def stats(self) -> dict[str, bool]:
        return {
            "connected": self._client is not None,
            "connecting": self._connecting is not None and not self._connecting.done(),
        }

    async def reset(self, reconnect: bool = True) -> None:
        """Drop the current client and optionally connect again right away."""
        client, self._client = self._client, None
        if client is not None:
            logger.info("Resetting Redis connection")
            await self._force_disconnect(client)
        if reconnect:
            await self.get_connection()
            logger.info("Redis connection re-established")

    async def close(self, timeout: float | None = None) -> None:
        """Close gracefully within ``timeout`` seconds, else disconnect forcibly."""
        if self._connecting is not None and not self._connecting.done():
            self._connecting.cancel()
        self._connecting = None

        client, self._client = self._client, None
        if client is None:
            logger.debug("Redis pool already closed")
            return

        timeout = self._close_timeout if timeout is None else timeout
        logger.info("Closing Redis connection")
        try:
            await asyncio.wait_for(client.aclose(), timeout)
            logger.info("Redis connection closed")
        except Exception as e:
            logger.warning(f"Graceful Redis close failed ({e!r}); forcing disconnect")
            await self._force_disconnect(client)

    @staticmethod
    async def _force_disconnect(client: Redis) -> None:
        try:
            await client.connection_pool.disconnect(inuse_connections=True)
        except Exception as e:
            logger.warning(f"Forced Redis disconnect failed: {e}")
