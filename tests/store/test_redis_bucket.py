"""Tests for the Redis-backed token bucket."""

import asyncio
import math

import pytest

from ratebucket.core.errors import (
    AcquireTimeoutError,
    BucketConfigError,
    InvalidCostError,
    PermanentShortageError,
    StoreError,
)
from ratebucket.core.state import BucketMetrics, BucketState
from ratebucket.store.redis_bucket import RedisTokenBucket, load_script


def make_bucket(redis, clock, key="user-1", **kwargs):
    kwargs.setdefault("capacity", 10)
    kwargs.setdefault("refill_rate", 5)
    return RedisTokenBucket(redis, key, clock=clock, **kwargs)


@pytest.mark.asyncio
async def test_unseen_key_starts_full(fake_redis, clock):
    bucket = make_bucket(fake_redis, clock)

    state = await bucket.get_state()

    assert state == BucketState(tokens=10, capacity=10, refill_rate=5, last_refill=0)


@pytest.mark.asyncio
async def test_drain_deny_and_wait_hint(fake_redis, clock):
    bucket = make_bucket(fake_redis, clock)

    assert await bucket.allow(10) is True
    assert await bucket.allow(1) is False
    assert await bucket.time_to_refill(1) == 200


@pytest.mark.asyncio
async def test_refill_after_two_seconds(fake_redis, clock):
    bucket = make_bucket(fake_redis, clock)
    assert await bucket.allow(10)

    clock.set(2000)

    assert await bucket.check(10) is True


@pytest.mark.asyncio
async def test_fractional_tokens_survive_round_trip(fake_redis, clock):
    bucket = make_bucket(fake_redis, clock, capacity=2, refill_rate=1)
    assert await bucket.allow(2)

    clock.set(250)

    assert (await bucket.get_state()).tokens == 0.25


@pytest.mark.asyncio
async def test_key_uses_prefix(fake_redis, clock):
    default = make_bucket(fake_redis, clock, key="alice")
    custom = make_bucket(fake_redis, clock, key="alice", prefix="api")

    await default.allow()
    await custom.allow()

    assert default.key == "tb:alice"
    assert custom.key == "api:alice"
    assert set(fake_redis.hashes) == {"tb:alice", "api:alice"}


@pytest.mark.asyncio
async def test_state_persisted_even_on_denial(fake_redis, clock):
    bucket = make_bucket(fake_redis, clock, capacity=1, refill_rate=1)
    assert await bucket.allow(1)

    clock.set(400)
    assert await bucket.allow(1) is False

    assert fake_redis.hashes["tb:user-1"] == {"tokens": "0.4", "lastRefill": "400"}


@pytest.mark.asyncio
async def test_check_does_not_consume(fake_redis, clock):
    bucket = make_bucket(fake_redis, clock, capacity=3, refill_rate=0)

    for _ in range(5):
        assert await bucket.check(3)

    assert (await bucket.get_state()).tokens == 3


@pytest.mark.asyncio
async def test_ttl_applied_on_each_call(fake_redis, clock):
    bucket = make_bucket(fake_redis, clock, ttl_seconds=60)

    await bucket.check()

    assert fake_redis.expirations["tb:user-1"] == 60


@pytest.mark.asyncio
async def test_no_ttl_by_default(fake_redis, clock):
    bucket = make_bucket(fake_redis, clock)

    await bucket.allow()

    assert fake_redis.expirations == {}


@pytest.mark.asyncio
async def test_reset_deletes_key(fake_redis, clock):
    bucket = make_bucket(fake_redis, clock)
    await bucket.allow(10)

    await bucket.reset()

    assert "tb:user-1" not in fake_redis.hashes
    assert (await bucket.get_state()).tokens == 10


@pytest.mark.asyncio
async def test_concurrent_callers_are_linearized(fake_redis, clock):
    # Two "processes" sharing one key with a single token and no refill.
    first = make_bucket(fake_redis, clock, key="shared", capacity=1, refill_rate=0)
    second = make_bucket(fake_redis, clock, key="shared", capacity=1, refill_rate=0)

    results = await asyncio.gather(first.allow(1), second.allow(1))

    assert sorted(results) == [False, True]


@pytest.mark.asyncio
async def test_many_concurrent_callers_never_overspend(fake_redis, clock):
    buckets = [make_bucket(fake_redis, clock, key="burst", capacity=5, refill_rate=0) for _ in range(20)]

    results = await asyncio.gather(*(b.allow(1) for b in buckets))

    assert results.count(True) == 5


@pytest.mark.asyncio
async def test_metrics_are_per_instance(fake_redis, clock):
    first = make_bucket(fake_redis, clock, key="shared", capacity=2, refill_rate=0)
    second = make_bucket(fake_redis, clock, key="shared", capacity=2, refill_rate=0)

    await first.allow()
    await first.allow()
    await second.allow()

    assert first.get_metrics() == BucketMetrics(total_requests=2, allowed=2, limited=0)
    assert second.get_metrics() == BucketMetrics(total_requests=1, allowed=0, limited=1)


@pytest.mark.asyncio
async def test_hook_receives_key_and_state(fake_redis, clock):
    seen = []
    bucket = make_bucket(
        fake_redis, clock, capacity=1, refill_rate=1, on_rate_limit=lambda key, state: seen.append((key, state))
    )
    await bucket.allow(1)
    clock.set(100)

    assert await bucket.allow(1) is False

    assert seen == [("tb:user-1", BucketState(tokens=0.1, capacity=1, refill_rate=1, last_refill=100))]


@pytest.mark.asyncio
async def test_failing_hook_does_not_break_allow(fake_redis, clock):
    def explode(key, state):
        raise RuntimeError("boom")

    bucket = make_bucket(fake_redis, clock, capacity=1, refill_rate=0, on_rate_limit=explode)
    await bucket.allow()

    assert await bucket.allow() is False


@pytest.mark.asyncio
async def test_zero_refill_wait_is_infinite(fake_redis, clock):
    bucket = make_bucket(fake_redis, clock, capacity=1, refill_rate=0)
    await bucket.allow()

    assert math.isinf(await bucket.time_to_refill(1))


@pytest.mark.asyncio
async def test_store_failure_propagates(fake_redis, clock):
    bucket = make_bucket(fake_redis, clock)
    fake_redis.fail = True

    with pytest.raises(StoreError) as exc_info:
        await bucket.allow()

    assert exc_info.value.key == "tb:user-1"
    with pytest.raises(StoreError):
        await bucket.reset()


@pytest.mark.asyncio
async def test_preloaded_script_uses_evalsha(fake_redis, clock):
    sha = await load_script(fake_redis)
    bucket = make_bucket(fake_redis, clock, script_sha=sha)

    assert await bucket.allow()

    assert fake_redis.calls == ["evalsha"]


@pytest.mark.asyncio
async def test_unknown_sha_falls_back_to_eval(fake_redis, clock):
    bucket = make_bucket(fake_redis, clock, script_sha="0" * 40)

    assert await bucket.allow()

    assert fake_redis.calls == ["evalsha", "eval"]


def test_invalid_limits_rejected(fake_redis):
    with pytest.raises(BucketConfigError):
        RedisTokenBucket(fake_redis, "k", capacity=0, refill_rate=1)
    with pytest.raises(BucketConfigError):
        RedisTokenBucket(fake_redis, "k", capacity=1, refill_rate=-1)


@pytest.mark.asyncio
async def test_acquire_times_out(fake_redis, clock, fake_sleep):
    bucket = make_bucket(fake_redis, clock, capacity=1, refill_rate=1)
    await bucket.allow()

    with pytest.raises(AcquireTimeoutError):
        await bucket.acquire(1, timeout_ms=100)


@pytest.mark.asyncio
async def test_acquire_waits_for_refill(fake_redis, clock, fake_sleep):
    bucket = make_bucket(fake_redis, clock, capacity=1, refill_rate=4)
    await bucket.allow()

    await bucket.acquire(1)

    assert fake_sleep == [0.25]


@pytest.mark.asyncio
async def test_acquire_without_refill_fails_fast(fake_redis, clock, fake_sleep):
    bucket = make_bucket(fake_redis, clock, capacity=1, refill_rate=0)
    await bucket.allow()

    with pytest.raises(PermanentShortageError):
        await bucket.acquire(1)


@pytest.mark.asyncio
async def test_negative_cost_rejected_before_store(fake_redis, clock):
    bucket = make_bucket(fake_redis, clock)

    for call in (bucket.allow, bucket.check, bucket.time_to_refill, bucket.acquire):
        with pytest.raises(InvalidCostError):
            await call(-5)

    assert fake_redis.calls == []
    assert bucket.get_metrics() == BucketMetrics()


@pytest.mark.asyncio
async def test_store_failure_is_not_counted(fake_redis, clock):
    bucket = make_bucket(fake_redis, clock)
    await bucket.allow()
    fake_redis.fail = True

    with pytest.raises(StoreError):
        await bucket.allow()

    assert bucket.get_metrics() == BucketMetrics(total_requests=1, allowed=1, limited=0)


@pytest.mark.asyncio
async def test_allow_with_state_uses_single_script_run(fake_redis, clock):
    bucket = make_bucket(fake_redis, clock, capacity=1, refill_rate=2)
    await bucket.allow()
    clock.set(100)

    allowed, state = await bucket.allow_with_state(1)

    assert allowed is False
    assert state == BucketState(tokens=0.2, capacity=1, refill_rate=2, last_refill=100)
    assert fake_redis.calls == ["eval", "eval"]
