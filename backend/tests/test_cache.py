"""Tests for the in-process TTL cache."""

import asyncio

import pytest

from chatstore.store.cache import MemoryCache


class FakeMonotonic:
    def __init__(self):
        self.value = 1000.0

    def __call__(self):
        return self.value


@pytest.fixture
def ticks():
    return FakeMonotonic()


def test_get_returns_value_before_expiry(ticks):
    cache = MemoryCache(default_ttl=10, clock=ticks)
    cache.set("a", {"x": 1})
    ticks.value += 9
    assert cache.get("a") == {"x": 1}
    assert cache.has("a")


def test_get_evicts_expired_entry(ticks):
    cache = MemoryCache(default_ttl=10, clock=ticks)
    cache.set("a", "value")
    ticks.value += 11
    assert cache.get("a") is None
    assert cache.stats()["size"] == 0


def test_get_returns_default_on_miss(ticks):
    cache = MemoryCache(clock=ticks)
    marker = object()
    assert cache.get("missing", marker) is marker


def test_per_entry_ttl_overrides_default(ticks):
    cache = MemoryCache(default_ttl=100, clock=ticks)
    cache.set("short", 1, ttl=1)
    cache.set("long", 2)
    ticks.value += 5
    assert cache.get("short") is None
    assert cache.get("long") == 2


def test_delete_and_clear(ticks):
    cache = MemoryCache(clock=ticks)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.delete("a")
    cache.delete("never-set")
    assert not cache.has("a")
    assert cache.has("b")
    cache.clear()
    assert cache.keys() == []


def test_sweep_removes_only_expired(ticks):
    cache = MemoryCache(default_ttl=10, clock=ticks)
    cache.set("old", 1)
    ticks.value += 6
    cache.set("new", 2)
    ticks.value += 6
    assert cache.sweep() == 1
    assert cache.keys() == ["new"]


def test_falsy_values_are_hits(ticks):
    cache = MemoryCache(clock=ticks)
    cache.set("zero", 0)
    cache.set("empty", "")
    assert cache.has("zero")
    assert cache.get("empty", "miss") == ""


@pytest.mark.asyncio
async def test_background_sweep_evicts_unread_entries():
    cache = MemoryCache(default_ttl=0.01, sweep_interval=0.02)
    cache.set("a", 1)
    cache.start()
    try:
        await asyncio.sleep(0.1)
        assert cache.stats()["size"] == 0
        assert cache.stats()["sweeping"] is True
    finally:
        await cache.stop()
    assert cache.stats()["sweeping"] is False


@pytest.mark.asyncio
async def test_stop_without_start_is_noop():
    cache = MemoryCache()
    await cache.stop()
