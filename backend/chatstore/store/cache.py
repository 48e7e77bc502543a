"""In-process TTL cache for decoded rows, with a background sweep of expired entries."""

import asyncio
import logging
import time
from typing import Any, Callable

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 5 * 60
DEFAULT_SWEEP_INTERVAL = 60


class MemoryCache:
    """Advisory cache local to one process.

    Entries are never authoritative: stores delete the entry on every write and
    only repopulate it from data they have just read back from Redis.
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: dict[str, tuple[Any, float]] = {}
        self._sweeper: asyncio.Task | None = None

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        self._entries[key] = (value, self._clock() + ttl)

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default
        value, expiry = entry
        if self._clock() > expiry:
            del self._entries[key]
            return default
        return value

    def has(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> list[str]:
        """Live keys. Expired entries found along the way are dropped."""
        self.sweep()
        return list(self._entries)

    def stats(self) -> dict[str, Any]:
        return {
            "size": len(self._entries),
            "default_ttl": self.default_ttl,
            "sweeping": self._sweeper is not None and not self._sweeper.done(),
        }

    def sweep(self) -> int:
        now = self._clock()
        expired = [key for key, (_, expiry) in self._entries.items() if now > expiry]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Cache sweep evicted {len(expired)} expired entries")
        return len(expired)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.sweep()

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None


_MISSING = object()
