"""Shared fixtures: a controllable clock and an in-process Redis script double."""

import asyncio
import hashlib

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import NoScriptError

from ratebucket.core.clock import ManualClock


class FakeScriptRedis:
    """
    Executes the token bucket script's semantics in-process.

    Each script call runs under one asyncio lock (yielding to the loop
    half-way through) to model Redis running scripts one at a time.
    """

    def __init__(self):
        self.hashes: dict[str, dict[str, str]] = {}
        self.expirations: dict[str, int] = {}
        self.scripts: dict[str, str] = {}
        self.calls: list[str] = []
        self.fail = False
        self.closed = False
        self._lock = asyncio.Lock()

    def _check_failure(self):
        if self.fail:
            raise RedisConnectionError("Connection refused")

    async def script_load(self, script):
        self._check_failure()
        sha = hashlib.sha1(script.encode()).hexdigest()
        self.scripts[sha] = script
        return sha

    async def evalsha(self, sha, numkeys, *keys_and_args):
        self.calls.append("evalsha")
        self._check_failure()
        if sha not in self.scripts:
            raise NoScriptError("NOSCRIPT No matching script. Please use EVAL.")
        return await self._run(*keys_and_args)

    async def eval(self, script, numkeys, *keys_and_args):
        self.calls.append("eval")
        self._check_failure()
        return await self._run(*keys_and_args)

    async def _run(self, key, capacity, refill_rate, cost, now_ms, consume, return_state, ttl_seconds):
        capacity = float(capacity)
        refill_rate = float(refill_rate)
        cost = float(cost)
        now_ms = int(now_ms)
        ttl_seconds = int(ttl_seconds)

        async with self._lock:
            data = self.hashes.get(key)
            if data is None:
                tokens, last_refill = capacity, now_ms
            else:
                tokens, last_refill = float(data["tokens"]), int(float(data["lastRefill"]))

            # Let other coroutines run between read and write.
            await asyncio.sleep(0)

            elapsed_ms = now_ms - last_refill
            if elapsed_ms > 0:
                tokens = min(capacity, tokens + (elapsed_ms / 1000.0) * refill_rate)
                last_refill = now_ms

            allowed = 0
            if tokens >= cost:
                allowed = 1
                if str(consume) == "1":
                    tokens -= cost

            self.hashes[key] = {"tokens": format(tokens, ".14g"), "lastRefill": str(last_refill)}
            if ttl_seconds > 0:
                self.expirations[key] = ttl_seconds

        encoded = format(tokens, ".14g").encode()
        if str(return_state) == "1":
            return [allowed, encoded, last_refill]
        return [allowed, encoded]

    async def delete(self, *names):
        self._check_failure()
        removed = 0
        for name in names:
            removed += self.hashes.pop(name, None) is not None
            self.expirations.pop(name, None)
        return removed

    async def exists(self, *names):
        self._check_failure()
        return sum(name in self.hashes for name in names)

    async def aclose(self):
        self.closed = True


@pytest.fixture
def clock():
    """A clock frozen at t=0 until advanced."""
    return ManualClock()


@pytest.fixture
def fake_redis():
    return FakeScriptRedis()


@pytest.fixture
def fake_sleep(monkeypatch, clock):
    """Make asyncio.sleep advance the manual clock instead of waiting."""
    waits: list[float] = []
    real_sleep = asyncio.sleep

    async def _sleep(seconds, *args, **kwargs):
        if seconds > 0:
            waits.append(seconds)
            clock.advance(seconds * 1000.0)
        await real_sleep(0)

    monkeypatch.setattr(asyncio, "sleep", _sleep)
    return waits
