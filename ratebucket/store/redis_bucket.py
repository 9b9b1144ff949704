"""Redis-backed token bucket for rate limits shared across processes."""

from typing import Any, Protocol

from loguru import logger
from redis.exceptions import NoScriptError, RedisError

from ratebucket.core.acquire import acquire as _acquire
from ratebucket.core.bucket import validate_limits
from ratebucket.core.clock import Clock, system_clock
from ratebucket.core.errors import StoreError
from ratebucket.core.hooks import KeyedHook, notify
from ratebucket.core.state import BucketMetrics, BucketState, round_tokens, validate_cost, wait_time_ms
from ratebucket.store.script import TOKEN_BUCKET_LUA

DEFAULT_PREFIX = "tb"


class ScriptClient(Protocol):
    """The subset of ``redis.asyncio.Redis`` the bucket relies on."""

    async def eval(self, script: str, numkeys: int, *keys_and_args: Any) -> Any: ...

    async def evalsha(self, sha: str, numkeys: int, *keys_and_args: Any) -> Any: ...

    async def delete(self, *names: str) -> Any: ...

    async def exists(self, *names: str) -> Any: ...

    async def script_load(self, script: str) -> Any: ...


async def load_script(client: ScriptClient) -> str:
    """Preload the bucket script and return its SHA for ``script_sha=``."""
    try:
        sha = await client.script_load(TOKEN_BUCKET_LUA)
    except RedisError as e:
        raise StoreError(f"Failed to load token bucket script: {e}") from e
    return sha.decode() if isinstance(sha, bytes) else sha


class RedisTokenBucket:
    """
    Token bucket whose state lives in a Redis hash.

    Every refill/consume runs inside one Lua script, so concurrent callers on
    the same key (from any process) are serialized by Redis. No local lock is
    held. Request counters are per instance and are not shared.
    """

    def __init__(
        self,
        redis: ScriptClient,
        key: str,
        capacity: float,
        refill_rate: float,
        prefix: str | None = None,
        ttl_seconds: int | None = None,
        script_sha: str | None = None,
        clock: Clock | None = None,
        on_rate_limit: KeyedHook | None = None,
    ):
        """
        Args:
            redis: ``redis.asyncio.Redis`` (or compatible) client.
            key: Logical bucket identifier.
            capacity: Maximum number of tokens (burst size).
            refill_rate: Tokens added per second.
            prefix: Key namespace, defaults to "tb".
            ttl_seconds: Idle expiry applied on every script run (0/None = none).
            script_sha: SHA of a preloaded script; EVALSHA is used when set.
            clock: Millisecond time source; defaults to wall-clock time.
            on_rate_limit: Called with ``(key, state)`` whenever allow() denies.
        """
        validate_limits(capacity, refill_rate)
        self.capacity = capacity
        self.refill_rate = refill_rate
        self.redis = redis
        self.key = f"{prefix if prefix is not None else DEFAULT_PREFIX}:{key}"
        self.ttl_seconds = ttl_seconds
        self.script_sha = script_sha
        self.clock = clock or system_clock
        self.on_rate_limit = on_rate_limit

        self._total_requests = 0
        self._allowed_requests = 0
        self._limited_requests = 0

    async def _run_script(
        self, cost: float, consume: bool = True, return_state: bool = False
    ) -> tuple[bool, float, float | None]:
        args = [
            self.key,
            self.capacity,
            self.refill_rate,
            cost,
            int(self.clock()),
            "1" if consume else "0",
            "1" if return_state else "0",
            int(self.ttl_seconds or 0),
        ]
        try:
            if self.script_sha:
                try:
                    result = await self.redis.evalsha(self.script_sha, 1, *args)
                except NoScriptError:
                    logger.warning(f"Token bucket script {self.script_sha} not cached; falling back to EVAL")
                    result = await self.redis.eval(TOKEN_BUCKET_LUA, 1, *args)
            else:
                result = await self.redis.eval(TOKEN_BUCKET_LUA, 1, *args)
        except RedisError as e:
            logger.error(f"Token bucket script failed for {self.key}: {e}")
            raise StoreError(f"Token bucket script failed for {self.key}: {e}", key=self.key) from e

        allowed = int(result[0]) == 1
        tokens = float(result[1])
        last_refill = float(result[2]) if len(result) > 2 else None
        return allowed, tokens, last_refill

    def _state(self, tokens: float, last_refill: float | None) -> BucketState:
        return BucketState(
            tokens=round_tokens(tokens),
            capacity=self.capacity,
            refill_rate=self.refill_rate,
            last_refill=last_refill,
        )

    async def allow(self, cost: float = 1) -> bool:
        """Try to consume ``cost`` tokens atomically. Returns False when rate limited."""
        allowed, _ = await self.allow_with_state(cost)
        return allowed

    async def allow_with_state(self, cost: float = 1) -> tuple[bool, BucketState]:
        """Like allow(), also returning the state from the same script run."""
        validate_cost(cost)
        allowed, tokens, last_refill = await self._run_script(cost, return_state=True)
        # Counted only once the store answered.
        self._total_requests += 1
        state = self._state(tokens, last_refill)
        if allowed:
            self._allowed_requests += 1
            return True, state

        self._limited_requests += 1
        logger.debug(f"Rate limited {self.key}: cost={cost} tokens={state.tokens}")
        notify(self.on_rate_limit, self.key, state)
        return False, state

    async def check(self, cost: float = 1) -> bool:
        validate_cost(cost)
        allowed, _, _ = await self._run_script(cost, consume=False)
        return allowed

    async def time_to_refill(self, cost: float = 1) -> float:
        validate_cost(cost)
        _, tokens, _ = await self._run_script(0, consume=False)
        return wait_time_ms(tokens, cost, self.refill_rate)

    async def get_state(self) -> BucketState:
        _, tokens, last_refill = await self._run_script(0, consume=False, return_state=True)
        return self._state(tokens, last_refill)

    async def reset(self) -> None:
        """Delete the Redis key; the next call sees a full bucket."""
        try:
            await self.redis.delete(self.key)
        except RedisError as e:
            raise StoreError(f"Failed to reset {self.key}: {e}", key=self.key) from e

    def get_metrics(self) -> BucketMetrics:
        return BucketMetrics(
            total_requests=self._total_requests,
            allowed=self._allowed_requests,
            limited=self._limited_requests,
        )

    async def acquire(self, cost: float = 1, timeout_ms: float | None = None) -> None:
        """Wait until ``cost`` tokens are granted or ``timeout_ms`` would be exceeded."""
        await _acquire(self, cost, timeout_ms)

    def __repr__(self) -> str:
        return (
            f"RedisTokenBucket(key={self.key!r}, capacity={self.capacity}, "
            f"refill_rate={self.refill_rate})"
        )
