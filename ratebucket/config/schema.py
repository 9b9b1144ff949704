"""Configuration schema using Pydantic."""

from __future__ import annotations

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BucketConfig(BaseModel):
    """Limits for one bucket."""
    capacity: float = Field(default=10, gt=0)  # Burst size
    refill_rate: float = Field(default=5, ge=0)  # Tokens per second


class RedisConfig(BaseModel):
    """Shared-store settings for Redis-backed buckets."""
    enabled: bool = False
    url: str = "redis://localhost:6379/0"
    prefix: str = "tb"
    ttl_seconds: int = Field(default=0, ge=0)  # 0 = keys never expire
    script_sha: str | None = None  # Preloaded script SHA, used via EVALSHA


class RegistryConfig(BaseModel):
    """Keyed registry settings."""
    ttl_ms: float | None = Field(default=None, gt=0)  # None = keep buckets forever
    default: BucketConfig = Field(default_factory=BucketConfig)
    overrides: dict[str, BucketConfig] = Field(default_factory=dict)  # Per-identifier limits

    def limits_for(self, identifier: str) -> BucketConfig:
        return self.overrides.get(identifier, self.default)


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    file_enabled: bool = False
    file_path: str = "~/.ratebucket/logs/ratebucket.log"
    rotation: str = "10 MB"
    retention: str = "7 days"


class Config(BaseSettings):
    """Root configuration for ratebucket."""
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="RATEBUCKET_",
        env_nested_delimiter="__",
    )
