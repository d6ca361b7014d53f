"""
FinGuard Counter Store
Time-windowed key -> count cache shared by the rate limiter and brute-force guard.

Both backends implement the same atomic "get-or-create, increment, return"
operation so call sites never depend on where the counters live.
"""

import math
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Dict, Iterator, Optional, Tuple

import redis

from finguard.core.config import Settings, settings as default_settings
from finguard.core.logging import LoggerMixin
from finguard.core.exceptions import CounterStoreError, CounterStoreTimeoutError


@dataclass(frozen=True)
class CounterEntry:
    """Snapshot of a live counter"""
    value: int
    expires_in: Optional[float]  # seconds until expiry, None if the key never expires


class CounterStore(ABC):
    """Atomic counters with per-key absolute expiry"""

    @abstractmethod
    def increment(self, key: str, ttl: timedelta) -> int:
        """Increment ``key`` and return the new value.

        A missing or expired key is created with value 0 and an expiry of
        ``ttl`` before incrementing; an existing key keeps its expiry.
        """

    @abstractmethod
    def get(self, key: str) -> Optional[CounterEntry]:
        """Return the live entry for ``key`` or None when absent/expired."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key`` if present."""

    def value(self, key: str) -> int:
        entry = self.get(key)
        return entry.value if entry else 0


class InMemoryCounterStore(CounterStore, LoggerMixin):
    """
    Process-local store guarded by a single lock.

    Expired keys are swept every ``purge_every`` increments, so keys that are
    never read again (one per probed address or email) do not accumulate.
    """

    def __init__(
        self,
        timeout: Optional[float] = 2.0,
        clock: Callable[[], float] = time.monotonic,
        purge_every: int = 1000,
    ):
        self.timeout = timeout
        self._clock = clock
        self.purge_every = max(1, purge_every)
        self._lock = threading.Lock()
        self._increments = 0
        # key -> (value, expires_at)
        self._entries: Dict[str, Tuple[int, float]] = {}

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if self.timeout is None:
            acquired = self._lock.acquire()
        else:
            acquired = self._lock.acquire(timeout=self.timeout)
        if not acquired:
            raise CounterStoreTimeoutError(
                f"Counter store lock not acquired within {self.timeout}s"
            )
        try:
            yield
        finally:
            self._lock.release()

    def increment(self, key: str, ttl: timedelta) -> int:
        with self._locked():
            now = self._clock()
            self._increments += 1
            if self._increments % self.purge_every == 0:
                self._drop_expired(now)
            value, expires_at = self._entries.get(key, (0, now))
            if expires_at <= now:
                value, expires_at = 0, now + ttl.total_seconds()
            value += 1
            self._entries[key] = (value, expires_at)
            return value

    def get(self, key: str) -> Optional[CounterEntry]:
        with self._locked():
            now = self._clock()
            item = self._entries.get(key)
            if item is None:
                return None
            value, expires_at = item
            if expires_at <= now:
                del self._entries[key]
                return None
            return CounterEntry(value=value, expires_in=expires_at - now)

    def delete(self, key: str) -> None:
        with self._locked():
            self._entries.pop(key, None)

    def purge_expired(self) -> int:
        """Drop expired keys, returning how many were removed."""
        with self._locked():
            return self._drop_expired(self._clock())

    def _drop_expired(self, now: float) -> int:
        # Caller holds the lock
        expired = [k for k, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            self.logger.debug(f"Purged {len(expired)} expired counters")
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


class RedisCounterStore(CounterStore, LoggerMixin):
    """Counters shared across processes through Redis"""

    def __init__(self, client: "redis.Redis"):
        self.client = client

    @classmethod
    def from_url(
        cls,
        url: str,
        password: Optional[str] = None,
        timeout: float = 2.0,
    ) -> "RedisCounterStore":
        client = redis.Redis.from_url(
            url,
            password=password,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
            decode_responses=True,
        )
        return cls(client)

    def increment(self, key: str, ttl: timedelta) -> int:
        seconds = max(1, math.ceil(ttl.total_seconds()))
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.set(key, 0, ex=seconds, nx=True)
            pipe.incr(key)
            _, value = pipe.execute()
        except redis.TimeoutError as e:
            raise CounterStoreTimeoutError(f"Redis increment timed out for {key}") from e
        except redis.RedisError as e:
            raise CounterStoreError(f"Redis increment failed for {key}: {e}") from e
        return int(value)

    def get(self, key: str) -> Optional[CounterEntry]:
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.get(key)
            pipe.pttl(key)
            raw, pttl = pipe.execute()
        except redis.TimeoutError as e:
            raise CounterStoreTimeoutError(f"Redis read timed out for {key}") from e
        except redis.RedisError as e:
            raise CounterStoreError(f"Redis read failed for {key}: {e}") from e

        if raw is None:
            return None
        expires_in = pttl / 1000.0 if pttl is not None and pttl >= 0 else None
        return CounterEntry(value=int(raw), expires_in=expires_in)

    def delete(self, key: str) -> None:
        try:
            self.client.delete(key)
        except redis.RedisError as e:
            raise CounterStoreError(f"Redis delete failed for {key}: {e}") from e


def create_counter_store(config: Optional[Settings] = None) -> CounterStore:
    """Build the counter store selected by ``COUNTER_STORE_BACKEND``."""
    config = config or default_settings
    if config.COUNTER_STORE_BACKEND == "redis":
        return RedisCounterStore.from_url(
            config.REDIS_URL,
            password=config.REDIS_PASSWORD,
            timeout=config.COUNTER_STORE_TIMEOUT_SECONDS,
        )
    return InMemoryCounterStore(timeout=config.COUNTER_STORE_TIMEOUT_SECONDS)
