"""Configuration models for the generation client.

Pydantic models loaded from YAML, with a small set of environment overrides
for the values that differ between development and production builds.

Example YAML:
    base_url: "https://api.quippix.app"
    tier: pro
    polling:
      interval_seconds: 2.0
      timeout_seconds: 180
    retry:
      max_retries: 3
    storage:
      backend: sqlite
      path: ~/.quippix/state.db
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, model_validator

from quippix.core.constants import (
    BATCH_POLL_INTERVAL_SECONDS,
    BATCH_POLL_TIMEOUT_SECONDS,
    DEFAULT_BASE_URL,
    DEFAULT_MAX_RETRIES,
    POLL_INTERVAL_SECONDS,
    POLL_TIMEOUT_SECONDS,
    REQUEST_TIMEOUT_SECONDS,
)

ENV_BASE_URL = "QUIPPIX_BASE_URL"
ENV_TIER = "QUIPPIX_TIER"


class PollingConfig(BaseModel):
    """Status polling cadence and deadlines."""

    interval_seconds: float = Field(default=POLL_INTERVAL_SECONDS, gt=0)
    timeout_seconds: float = Field(default=POLL_TIMEOUT_SECONDS, gt=0)
    batch_interval_seconds: float = Field(default=BATCH_POLL_INTERVAL_SECONDS, gt=0)
    batch_timeout_seconds: float = Field(default=BATCH_POLL_TIMEOUT_SECONDS, gt=0)


class RetryConfig(BaseModel):
    """Bounded retry policy for failed generations."""

    max_retries: int = Field(
        default=DEFAULT_MAX_RETRIES, ge=0, description="Maximum resubmissions per flow"
    )
    base_delay_seconds: float = Field(
        default=1.0, ge=0, description="Initial delay before an automatic retry"
    )
    max_delay_seconds: float = Field(default=30.0, ge=0, description="Delay ceiling")
    exponential_base: float = Field(default=2.0, gt=1, description="Backoff multiplier")
    jitter: bool = Field(default=True, description="Add randomness to delays")

    @model_validator(mode="after")
    def _validate_delay_range(self) -> RetryConfig:
        if self.base_delay_seconds > self.max_delay_seconds:
            raise ValueError(
                f"base_delay_seconds ({self.base_delay_seconds}) must not exceed "
                f"max_delay_seconds ({self.max_delay_seconds})"
            )
        return self


class StorageConfig(BaseModel):
    """Where the offline queue and recovery record are persisted."""

    backend: Literal["json", "sqlite", "memory"] = "json"
    path: Path = Field(
        default=Path("~/.quippix/state.json"),
        description="JSON document or SQLite database path (ignored for memory)",
    )

    def resolved_path(self) -> Path:
        return self.path.expanduser()


class ConnectivityConfig(BaseModel):
    """Backend health probing used as the connectivity signal."""

    probe_interval_seconds: float = Field(default=5.0, gt=0)
    probe_timeout_seconds: float = Field(default=3.0, gt=0)


class ClientConfig(BaseModel):
    """Top-level configuration for the generation client."""

    base_url: str = Field(default=DEFAULT_BASE_URL, description="Rendering backend URL")
    tier: Literal["free", "pro"] = Field(default="free", description="Entitlement tier header")
    request_timeout_seconds: float = Field(default=REQUEST_TIMEOUT_SECONDS, gt=0)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    connectivity: ConnectivityConfig = Field(default_factory=ConnectivityConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> ClientConfig:
        """Load configuration from a YAML file, then apply env overrides."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls.model_validate(data).with_env_overrides()

    @classmethod
    def from_yaml_string(cls, yaml_str: str) -> ClientConfig:
        data = yaml.safe_load(yaml_str) or {}
        return cls.model_validate(data)

    def with_env_overrides(self, environ: dict[str, str] | None = None) -> ClientConfig:
        """Return a copy with QUIPPIX_BASE_URL / QUIPPIX_TIER applied."""
        env = os.environ if environ is None else environ
        updates: dict[str, str] = {}
        if env.get(ENV_BASE_URL):
            updates["base_url"] = env[ENV_BASE_URL]
        if env.get(ENV_TIER):
            updates["tier"] = env[ENV_TIER]
        if not updates:
            return self
        return type(self).model_validate({**self.model_dump(), **updates})
