"""Keyed bucket registry and its config-driven builder."""

from ratebucket.registry.builder import build_bucket_factory, build_registry
from ratebucket.registry.manager import AsyncBucketRegistry, BucketRegistry, RegistryOptions

__all__ = [
    "BucketRegistry",
    "AsyncBucketRegistry",
    "RegistryOptions",
    "build_bucket_factory",
    "build_registry",
]
