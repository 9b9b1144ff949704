"""
ratebucket - token-bucket rate limiting, in-process or shared through Redis.
"""

__version__ = "0.3.0"
__logo__ = "🪣"

from ratebucket.core.bucket import TokenBucket
from ratebucket.core.clock import ManualClock, system_clock
from ratebucket.core.errors import (
    AcquireError,
    AcquireTimeoutError,
    BucketConfigError,
    InvalidCostError,
    PermanentShortageError,
    RateBucketError,
    StoreError,
)
from ratebucket.core.state import BucketMetrics, BucketState
from ratebucket.registry.manager import AsyncBucketRegistry, BucketRegistry, RegistryOptions
from ratebucket.store.redis_bucket import RedisTokenBucket, load_script

__all__ = [
    "TokenBucket",
    "RedisTokenBucket",
    "BucketRegistry",
    "AsyncBucketRegistry",
    "RegistryOptions",
    "BucketState",
    "BucketMetrics",
    "ManualClock",
    "system_clock",
    "load_script",
    "RateBucketError",
    "BucketConfigError",
    "InvalidCostError",
    "AcquireError",
    "AcquireTimeoutError",
    "PermanentShortageError",
    "StoreError",
]
