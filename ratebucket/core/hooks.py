"""Rate-limit hook signatures and safe invocation."""

from typing import Any, Callable

from loguru import logger

from ratebucket.core.state import BucketState

# Local buckets report only their state; keyed callers also get the identifier.
BucketHook = Callable[[BucketState], Any]
KeyedHook = Callable[[str, BucketState], Any]


def notify(hook: Callable[..., Any] | None, *args: Any) -> None:
    """Invoke a rate-limit hook, logging instead of propagating its failures."""
    if hook is None:
        return
    try:
        hook(*args)
    except Exception as e:
        logger.error(f"Rate-limit hook {getattr(hook, '__name__', hook)!r} failed: {e}")
