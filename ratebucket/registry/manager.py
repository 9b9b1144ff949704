"""
Registry of per-identifier buckets (per user, IP, route, ...).

Buckets are created lazily by a caller-supplied factory, reused while in
use, and evicted once idle for longer than ``ttl_ms``.
"""

import threading
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

from loguru import logger

from ratebucket.core.acquire import acquire as _acquire, maybe_await
from ratebucket.core.clock import Clock, system_clock
from ratebucket.core.hooks import KeyedHook, notify
from ratebucket.core.state import BucketState

B = TypeVar("B")


@dataclass
class RegistryOptions(Generic[B]):
    """Factory plus optional idle TTL and registry-level rate-limit hook."""
    create_bucket: Callable[[str], B]
    ttl_ms: float | None = None
    on_rate_limit: KeyedHook | None = None


@dataclass
class _Entry(Generic[B]):
    bucket: B
    last_access: float


class BucketRegistry(Generic[B]):
    """
    Synchronous registry for in-process ``TokenBucket`` instances.

    Resolution (lookup, expiry check, create-if-absent) runs under one lock so
    two callers can never build duplicate buckets for the same identifier.
    Eviction is lazy on access; call cleanup() to sweep eagerly.
    """

    def __init__(
        self,
        options: RegistryOptions[B] | Callable[[str], B],
        clock: Clock | None = None,
    ):
        if isinstance(options, RegistryOptions):
            self._create_bucket = options.create_bucket
            self.ttl_ms = options.ttl_ms
            self.on_rate_limit = options.on_rate_limit
        else:
            self._create_bucket = options
            self.ttl_ms = None
            self.on_rate_limit = None
        self.clock = clock or system_clock
        self._entries: dict[str, _Entry[B]] = {}
        self._lock = threading.Lock()

    def _expired(self, entry: _Entry[B], now: float) -> bool:
        return self.ttl_ms is not None and now - entry.last_access > self.ttl_ms

    def resolve(self, identifier: str) -> B:
        """Return the bucket for ``identifier``, creating a fresh one when absent or expired."""
        with self._lock:
            now = self.clock()
            entry = self._entries.get(identifier)
            if entry is not None and self._expired(entry, now):
                logger.debug(f"Bucket for {identifier!r} expired after {now - entry.last_access}ms idle")
                del self._entries[identifier]
                entry = None

            if entry is None:
                entry = _Entry(bucket=self._create_bucket(identifier), last_access=now)
                self._entries[identifier] = entry
            else:
                entry.last_access = now
            return entry.bucket

    def remove(self, identifier: str) -> bool:
        with self._lock:
            return self._entries.pop(identifier, None) is not None

    def cleanup(self) -> int:
        """Drop every bucket idle for longer than ``ttl_ms``. Returns how many were removed."""
        if self.ttl_ms is None:
            return 0
        with self._lock:
            now = self.clock()
            stale = [key for key, entry in self._entries.items() if self._expired(entry, now)]
            for key in stale:
                del self._entries[key]
        if stale:
            logger.debug(f"Evicted {len(stale)} idle bucket(s)")
        return len(stale)

    def last_access(self, identifier: str) -> float | None:
        with self._lock:
            entry = self._entries.get(identifier)
            return entry.last_access if entry is not None else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, identifier: object) -> bool:
        with self._lock:
            return identifier in self._entries

    def allow(self, identifier: str, cost: float = 1) -> bool:
        bucket: Any = self.resolve(identifier)
        allowed, state = bucket.allow_with_state(cost)
        if not allowed:
            notify(self.on_rate_limit, identifier, state)
        return allowed

    def check(self, identifier: str, cost: float = 1) -> bool:
        return self.resolve(identifier).check(cost)

    def time_to_refill(self, identifier: str, cost: float = 1) -> float:
        return self.resolve(identifier).time_to_refill(cost)

    def get_state(self, identifier: str) -> BucketState:
        return self.resolve(identifier).get_state()

    def reset(self, identifier: str) -> None:
        self.resolve(identifier).reset()

    async def acquire(self, identifier: str, cost: float = 1, timeout_ms: float | None = None) -> None:
        await _acquire(self.resolve(identifier), cost, timeout_ms)


class AsyncBucketRegistry(BucketRegistry[B]):
    """
    Registry whose delegations are awaited, for ``RedisTokenBucket`` (or a mix).

    Resolution itself stays synchronous: it never awaits, so it cannot be
    interleaved with another coroutine on the same event loop.
    """

    async def allow(self, identifier: str, cost: float = 1) -> bool:
        bucket: Any = self.resolve(identifier)
        # The hook gets the state the denial was decided on, not a re-read.
        allowed, state = await maybe_await(bucket.allow_with_state(cost))
        if not allowed:
            notify(self.on_rate_limit, identifier, state)
        return allowed

    async def check(self, identifier: str, cost: float = 1) -> bool:
        return await maybe_await(self.resolve(identifier).check(cost))

    async def time_to_refill(self, identifier: str, cost: float = 1) -> float:
        return await maybe_await(self.resolve(identifier).time_to_refill(cost))

    async def get_state(self, identifier: str) -> BucketState:
        return await maybe_await(self.resolve(identifier).get_state())

    async def reset(self, identifier: str) -> None:
        await maybe_await(self.resolve(identifier).reset())
