"""Observable bucket snapshots and the shared refill/wait math."""

import math
from dataclasses import asdict, dataclass

from ratebucket.core.errors import InvalidCostError

# Decimal places kept when tokens are exposed in a snapshot.
STATE_PRECISION = 4


@dataclass(frozen=True)
class BucketState:
    """Point-in-time view of a bucket after its refill step."""
    tokens: float
    capacity: float
    refill_rate: float
    last_refill: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class BucketMetrics:
    """Per-instance request counters."""
    total_requests: int = 0
    allowed: int = 0
    limited: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def round_tokens(tokens: float) -> float:
    return round(float(tokens), STATE_PRECISION)


def refill(tokens: float, last_refill: float, now: float, capacity: float, refill_rate: float) -> tuple[float, float]:
    """
    Apply continuous refill for the time elapsed since ``last_refill``.

    Returns the new ``(tokens, last_refill)`` pair. When the clock has not
    moved forward the inputs are returned unchanged, so ``last_refill``
    never goes backward.
    """
    elapsed_ms = now - last_refill
    if elapsed_ms <= 0:
        return tokens, last_refill
    tokens = min(capacity, tokens + (elapsed_ms / 1000.0) * refill_rate)
    return tokens, now


def wait_time_ms(tokens: float, cost: float, refill_rate: float) -> float:
    """
    Milliseconds until ``cost`` tokens exist, given the current ``tokens``.

    Returns 0 when the request could be served now and ``math.inf`` when the
    bucket never refills.
    """
    if tokens >= cost:
        return 0
    if refill_rate <= 0:
        return math.inf
    return math.ceil((cost - tokens) * 1000.0 / refill_rate)


def validate_cost(cost: float) -> None:
    """Reject negative costs, which would push tokens above capacity."""
    if cost < 0:
        raise InvalidCostError(f"cost must be >= 0 (got {cost})")
