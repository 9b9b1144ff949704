"""Wait-until-permitted loop shared by every bucket type."""

import asyncio
import inspect
import math
from typing import Any

from loguru import logger

from ratebucket.core.errors import AcquireTimeoutError, PermanentShortageError
from ratebucket.core.state import validate_cost


async def maybe_await(value: Any) -> Any:
    """Await bucket results from async buckets, pass sync results through."""
    if inspect.isawaitable(value):
        return await value
    return value


async def acquire(bucket: Any, cost: float = 1, timeout_ms: float | None = None) -> None:
    """
    Wait until ``bucket`` grants ``cost`` tokens.

    Works with both ``TokenBucket`` and ``RedisTokenBucket``. Between attempts
    the coroutine sleeps for exactly the bucket's own ``time_to_refill``
    estimate, so there is no polling interval.

    Raises:
        PermanentShortageError: the bucket never refills and is short, or
            ``cost`` exceeds its capacity.
        InvalidCostError: ``cost`` is negative.
        AcquireTimeoutError: the next refill would land after ``timeout_ms``.
    """
    validate_cost(cost)
    if cost > bucket.capacity:
        raise PermanentShortageError(
            f"Cannot acquire {cost} token(s): bucket capacity is {bucket.capacity}", cost
        )
    if bucket.refill_rate <= 0 and not await maybe_await(bucket.check(cost)):
        raise PermanentShortageError(
            "Cannot acquire tokens: refill_rate is 0 and bucket is empty", cost
        )

    start = bucket.clock()
    while True:
        if await maybe_await(bucket.allow(cost)):
            return

        wait = await maybe_await(bucket.time_to_refill(cost))
        if wait <= 0:
            # Refilled between the two calls; try again straight away.
            continue
        if math.isinf(wait):
            raise PermanentShortageError(
                "Cannot acquire tokens: refill_rate is 0 and bucket is empty", cost
            )

        if timeout_ms is not None:
            elapsed = bucket.clock() - start
            if elapsed + wait > timeout_ms:
                raise AcquireTimeoutError(cost, timeout_ms, wait)

        logger.debug(f"Waiting {wait}ms for {cost} token(s)")
        await asyncio.sleep(wait / 1000.0)
