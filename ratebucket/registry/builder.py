"""Build bucket factories and registries from configuration."""

from typing import Any, Callable

from ratebucket.config.schema import Config
from ratebucket.core.bucket import TokenBucket
from ratebucket.core.clock import Clock
from ratebucket.core.hooks import KeyedHook
from ratebucket.registry.manager import AsyncBucketRegistry, BucketRegistry, RegistryOptions
from ratebucket.store.redis_bucket import RedisTokenBucket


def build_bucket_factory(
    config: Config,
    redis: Any | None = None,
    clock: Clock | None = None,
) -> Callable[[str], Any]:
    """
    Return a ``create_bucket(identifier)`` factory for ``config``.

    Limits come from ``config.registry.overrides[identifier]`` when present,
    otherwise ``config.registry.default``. A Redis client yields
    ``RedisTokenBucket`` instances, otherwise local ``TokenBucket`` ones.
    """
    registry_cfg = config.registry
    redis_cfg = config.redis

    def create_bucket(identifier: str) -> Any:
        limits = registry_cfg.limits_for(identifier)
        if redis is not None:
            return RedisTokenBucket(
                redis,
                identifier,
                capacity=limits.capacity,
                refill_rate=limits.refill_rate,
                prefix=redis_cfg.prefix,
                ttl_seconds=redis_cfg.ttl_seconds,
                script_sha=redis_cfg.script_sha,
                clock=clock,
            )
        return TokenBucket(limits.capacity, limits.refill_rate, clock=clock)

    return create_bucket


def build_registry(
    config: Config,
    redis: Any | None = None,
    registry: BucketRegistry | None = None,
    create_bucket: Callable[[str], Any] | None = None,
    on_rate_limit: KeyedHook | None = None,
    clock: Clock | None = None,
) -> BucketRegistry:
    """
    Use ``registry`` when given, otherwise build one.

    A built registry takes ``create_bucket`` when given, otherwise a factory
    derived from ``config``. With a Redis client the registry is an
    ``AsyncBucketRegistry``.
    """
    if registry is not None:
        return registry

    options = RegistryOptions(
        create_bucket=create_bucket or build_bucket_factory(config, redis=redis, clock=clock),
        ttl_ms=config.registry.ttl_ms,
        on_rate_limit=on_rate_limit,
    )
    if redis is not None:
        return AsyncBucketRegistry(options, clock=clock)
    return BucketRegistry(options, clock=clock)
