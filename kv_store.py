"""Counter and cache store with per-key expiry.

Both backends answer the same small command surface (``incr``, ``expire``,
``ttl``, ``get``, ``set``, ``delete``, ``ping``): Redis for deployments and a
locked in-process dict for tests and single-process use. Every command
touches a single key and is atomic.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, Optional, Protocol, Tuple

import redis

from engines.errors import StoreUnavailable

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

# Redis TTL replies for a missing key and a key without expiry.
KEY_MISSING = -2
NO_EXPIRY = -1

DEFAULT_REDIS_URL = "redis://localhost:6379"


class KeyValueStore(Protocol):
    def incr(self, key: str, ttl_seconds: Optional[int] = None) -> int: ...

    def expire(self, key: str, ttl_seconds: int) -> bool: ...

    def ttl(self, key: str) -> int: ...

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None: ...

    def delete(self, key: str) -> bool: ...

    def ping(self) -> bool: ...


class RedisKeyValueStore:
    """Store on a redis-py client created with ``decode_responses=True``."""

    def __init__(self, client: "redis.Redis"):
        self._client = client

    @classmethod
    def from_url(cls, url: str = DEFAULT_REDIS_URL) -> "RedisKeyValueStore":
        # redis-py connects lazily, so an unreachable server only shows up on use.
        return cls(redis.from_url(url, decode_responses=True))

    @contextmanager
    def _commands(self) -> Iterator["redis.Redis"]:
        try:
            yield self._client
        except redis.exceptions.RedisError as exc:
            raise StoreUnavailable(f"Redis error: {exc}") from exc

    def incr(self, key: str, ttl_seconds: Optional[int] = None) -> int:
        with self._commands() as client:
            with client.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                if ttl_seconds:
                    # NX: only the increment that created the key starts the window.
                    pipe.expire(key, ttl_seconds, nx=True)
                results = pipe.execute()
        return int(results[0])

    def expire(self, key: str, ttl_seconds: int) -> bool:
        with self._commands() as client:
            return bool(client.expire(key, ttl_seconds))

    def ttl(self, key: str) -> int:
        with self._commands() as client:
            return int(client.ttl(key))

    def get(self, key: str) -> Optional[str]:
        with self._commands() as client:
            return client.get(key)

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        with self._commands() as client:
            client.set(key, value, ex=ttl_seconds or None)

    def delete(self, key: str) -> bool:
        with self._commands() as client:
            return client.delete(key) > 0

    def ping(self) -> bool:
        try:
            with self._commands() as client:
                return bool(client.ping())
        except StoreUnavailable:
            logger.warning("Key/value store ping failed", exc_info=True)
            return False


def _remaining_seconds(expires_at: Optional[float], now: float) -> int:
    if expires_at is None:
        return NO_EXPIRY
    return max(0, int(math.ceil(expires_at - now)))


class MemoryKeyValueStore:
    """Thread-safe in-process store; expired keys are dropped on access."""

    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._entries: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str, now: float) -> Optional[Tuple[str, Optional[float]]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= now:
            del self._entries[key]
            return None
        return entry

    def incr(self, key: str, ttl_seconds: Optional[int] = None) -> int:
        with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            if entry is None:
                expires_at = now + ttl_seconds if ttl_seconds else None
                self._entries[key] = ("1", expires_at)
                return 1
            value, expires_at = entry
            try:
                count = int(value) + 1
            except ValueError as exc:
                raise StoreUnavailable(f"Value at {key} is not an integer") from exc
            self._entries[key] = (str(count), expires_at)
            return count

    def expire(self, key: str, ttl_seconds: int) -> bool:
        with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            if entry is None:
                return False
            self._entries[key] = (entry[0], now + ttl_seconds)
            return True

    def ttl(self, key: str) -> int:
        with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            if entry is None:
                return KEY_MISSING
            return _remaining_seconds(entry[1], now)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._live(key, self._clock())
            return entry[0] if entry else None

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        with self._lock:
            now = self._clock()
            self._entries[key] = (value, now + ttl_seconds if ttl_seconds else None)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def ping(self) -> bool:
        return True


def build_store(backend: str, *, redis_url: Optional[str] = None, clock: Clock = time.time) -> KeyValueStore:
    """Instantiate the configured backend (``redis`` or ``memory``)."""
    if backend == "memory":
        return MemoryKeyValueStore(clock=clock)
    if backend == "redis":
        return RedisKeyValueStore.from_url(redis_url or DEFAULT_REDIS_URL)
    raise ValueError(f"Unknown store backend: {backend}")
