"""In-process token bucket."""

import threading

from loguru import logger

from ratebucket.core.acquire import acquire as _acquire
from ratebucket.core.clock import Clock, system_clock
from ratebucket.core.errors import BucketConfigError
from ratebucket.core.hooks import BucketHook, notify
from ratebucket.core.state import BucketMetrics, BucketState, refill, round_tokens, validate_cost, wait_time_ms


def validate_limits(capacity: float, refill_rate: float) -> None:
    if capacity <= 0 or refill_rate < 0:
        raise BucketConfigError(
            f"capacity must be > 0 and refill_rate must be >= 0 "
            f"(got capacity={capacity}, refill_rate={refill_rate})"
        )


class TokenBucket:
    """
    In-memory token bucket rate limiter.

    Tokens refill continuously at ``refill_rate`` per second and cap at
    ``capacity``, which is the burst size. A request spends ``cost`` tokens
    and is rejected when not enough are available. The bucket starts full.

    Refill happens lazily at the top of every call, so the state is a pure
    function of ``(capacity, refill_rate, tokens, last_refill, now)``.
    All mutations run under an instance lock; the hook runs outside it.
    """

    def __init__(
        self,
        capacity: float,
        refill_rate: float,
        clock: Clock | None = None,
        on_rate_limit: BucketHook | None = None,
    ):
        """
        Args:
            capacity: Maximum number of tokens (burst size).
            refill_rate: Tokens added per second.
            clock: Millisecond time source; defaults to wall-clock time.
            on_rate_limit: Called with the bucket state whenever allow() denies.
        """
        validate_limits(capacity, refill_rate)
        self.capacity = capacity
        self.refill_rate = refill_rate
        self.clock = clock or system_clock
        self.on_rate_limit = on_rate_limit

        self._lock = threading.Lock()
        self._tokens = float(capacity)
        self._last_refill = self.clock()

        self._total_requests = 0
        self._allowed_requests = 0
        self._limited_requests = 0

    def _refill(self) -> None:
        self._tokens, self._last_refill = refill(
            self._tokens, self._last_refill, self.clock(), self.capacity, self.refill_rate
        )

    def _snapshot(self) -> BucketState:
        return BucketState(
            tokens=round_tokens(self._tokens),
            capacity=self.capacity,
            refill_rate=self.refill_rate,
            last_refill=self._last_refill,
        )

    def allow(self, cost: float = 1) -> bool:
        """Try to consume ``cost`` tokens. Returns False when rate limited."""
        allowed, _ = self.allow_with_state(cost)
        return allowed

    def allow_with_state(self, cost: float = 1) -> tuple[bool, BucketState]:
        """Like allow(), also returning the state the decision was made on."""
        validate_cost(cost)
        with self._lock:
            self._total_requests += 1
            self._refill()
            allowed = self._tokens >= cost
            if allowed:
                self._tokens -= cost
                self._allowed_requests += 1
            else:
                self._limited_requests += 1
            state = self._snapshot()

        if not allowed:
            logger.debug(f"Rate limited: cost={cost} tokens={state.tokens}/{self.capacity}")
            notify(self.on_rate_limit, state)
        return allowed, state

    def check(self, cost: float = 1) -> bool:
        """Whether ``cost`` tokens are available, without consuming them."""
        validate_cost(cost)
        with self._lock:
            self._refill()
            return self._tokens >= cost

    def time_to_refill(self, cost: float = 1) -> float:
        """Milliseconds until ``cost`` tokens exist (0 if already there, inf if never)."""
        validate_cost(cost)
        with self._lock:
            self._refill()
            return wait_time_ms(self._tokens, cost, self.refill_rate)

    def get_state(self) -> BucketState:
        with self._lock:
            self._refill()
            return self._snapshot()

    def reset(self) -> None:
        """Refill the bucket to capacity."""
        with self._lock:
            self._tokens = float(self.capacity)
            self._last_refill = max(self._last_refill, self.clock())

    def get_metrics(self) -> BucketMetrics:
        with self._lock:
            return BucketMetrics(
                total_requests=self._total_requests,
                allowed=self._allowed_requests,
                limited=self._limited_requests,
            )

    # Async wrappers so local and Redis buckets can share call sites.

    async def allow_async(self, cost: float = 1) -> bool:
        return self.allow(cost)

    async def check_async(self, cost: float = 1) -> bool:
        return self.check(cost)

    async def time_to_refill_async(self, cost: float = 1) -> float:
        return self.time_to_refill(cost)

    async def get_state_async(self) -> BucketState:
        return self.get_state()

    async def acquire(self, cost: float = 1, timeout_ms: float | None = None) -> None:
        """Wait until ``cost`` tokens are granted or ``timeout_ms`` would be exceeded."""
        await _acquire(self, cost, timeout_ms)

    def __repr__(self) -> str:
        return f"TokenBucket(capacity={self.capacity}, refill_rate={self.refill_rate})"
