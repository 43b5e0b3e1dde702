import threading

import pytest
import redis

from conftest import FakeRedis, ManualClock
from engines.errors import StoreUnavailable
from engines.quota import QuotaGate
from kv_store import (
    KEY_MISSING,
    NO_EXPIRY,
    MemoryKeyValueStore,
    RedisKeyValueStore,
    build_store,
)


@pytest.fixture(params=["memory", "redis"])
def store_and_clock(request):
    clock = ManualClock()
    if request.param == "memory":
        return MemoryKeyValueStore(clock=clock), clock
    return RedisKeyValueStore(FakeRedis(clock)), clock


def test_incr_sets_expiry_only_on_creation(store_and_clock):
    store, clock = store_and_clock

    assert store.incr("counter", 60) == 1
    clock.advance(30)
    assert store.incr("counter", 60) == 2

    assert store.ttl("counter") == 30


def test_incr_without_ttl_never_expires(store_and_clock):
    store, clock = store_and_clock

    store.incr("counter")
    clock.advance(10_000)

    assert store.get("counter") == "1"
    assert store.ttl("counter") == NO_EXPIRY


def test_expired_keys_are_missing(store_and_clock):
    store, clock = store_and_clock
    store.set("schedule:alice", "{}", 10)

    clock.advance(10)

    assert store.get("schedule:alice") is None
    assert store.ttl("schedule:alice") == KEY_MISSING
    assert store.incr("schedule:alice", 5) == 1


def test_set_overwrites_value_and_expiry(store_and_clock):
    store, clock = store_and_clock
    store.set("k", "a", 10)
    store.set("k", "b")

    clock.advance(100)

    assert store.get("k") == "b"


def test_expire_and_delete(store_and_clock):
    store, _ = store_and_clock

    assert store.expire("missing", 10) is False
    store.set("k", "v")
    assert store.expire("k", 10) is True
    assert store.ttl("k") == 10
    assert store.delete("k") is True
    assert store.delete("k") is False
    assert store.ping() is True


def test_concurrent_increments_are_not_lost():
    store = MemoryKeyValueStore()

    def _worker():
        for _ in range(25):
            store.incr("counter", 60)

    threads = [threading.Thread(target=_worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert store.get("counter") == "100"


def test_redis_errors_become_store_unavailable():
    client = FakeRedis(ManualClock())
    client.fail = redis.exceptions.ConnectionError("connection refused")
    store = RedisKeyValueStore(client)

    with pytest.raises(StoreUnavailable):
        store.incr("ratelimit:alice", 60)
    with pytest.raises(StoreUnavailable):
        store.get("schedule:alice")
    with pytest.raises(StoreUnavailable):
        store.set("schedule:alice", "{}", 60)
    assert store.ping() is False


def test_unreachable_redis_lets_quota_through():
    client = FakeRedis(ManualClock())
    client.fail = redis.exceptions.TimeoutError("timed out")
    gate = QuotaGate(RedisKeyValueStore(client), limit=1)

    assert gate.increment("alice").allowed
    assert gate.increment("alice").allowed


def test_quota_window_on_redis():
    clock = ManualClock()
    gate = QuotaGate(RedisKeyValueStore(FakeRedis(clock)), limit=2, window_seconds=3600)

    assert [gate.increment("alice").allowed for _ in range(3)] == [True, True, False]
    clock.advance(1800)
    assert gate.reset_in("alice") == 1800
    clock.advance(1800)
    assert gate.increment("alice").allowed


def test_build_store():
    assert isinstance(build_store("memory"), MemoryKeyValueStore)
    assert isinstance(build_store("redis", redis_url="redis://cache.internal:6380/1"), RedisKeyValueStore)
    with pytest.raises(ValueError):
        build_store("sqlite")
