"""Error types raised by buckets, registries and the Redis store adapter."""


class RateBucketError(Exception):
    """Base class for all ratebucket errors."""
    pass


class BucketConfigError(RateBucketError, ValueError):
    """Raised when a bucket is constructed with an invalid capacity or refill rate."""
    pass


class AcquireError(RateBucketError):
    """Raised when acquire() gives up without obtaining tokens."""

    def __init__(self, message: str, cost: float):
        super().__init__(message)
        self.cost = cost


class PermanentShortageError(AcquireError):
    """The bucket can never satisfy the request, so waiting is pointless."""
    pass


class AcquireTimeoutError(AcquireError):
    """The tokens would not become available before the deadline."""

    def __init__(self, cost: float, timeout_ms: float, wait_ms: float):
        super().__init__(f"Timeout while waiting for {cost} token(s)", cost)
        self.timeout_ms = timeout_ms
        self.wait_ms = wait_ms


class StoreError(RateBucketError):
    """The shared store failed while running the atomic bucket operation."""

    def __init__(self, message: str, key: str | None = None):
        super().__init__(message)
        self.key = key


class InvalidCostError(RateBucketError, ValueError):
    """Raised when a request asks for a negative number of tokens."""
    pass
