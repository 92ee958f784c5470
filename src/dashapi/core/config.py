"""Configuration models for dashapi.

Defines Pydantic v2 models for the client, the retry policy, the query cache,
background sync, the connectivity probe and logging. ``load_config`` merges
an optional YAML file with ``API_*`` environment overrides.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from dashapi.core.errors import ConfigurationError
from dashapi.core.logging import get_logger

_logger = get_logger("config")

DEFAULT_BASE_URL = "http://localhost:3001/api"
DEFAULT_API_VERSION = "v1"
DEFAULT_TIMEOUT_MS = 10_000


class ClientConfig(BaseModel):
    """HTTP client settings.

    ``timeout_seconds`` bounds each individual attempt. The original request
    and its post-refresh retry each get their own deadline.
    """

    base_url: str = Field(
        default=DEFAULT_BASE_URL,
        description="API root; REST paths are resolved relative to it",
    )
    api_version: str = Field(
        default=DEFAULT_API_VERSION,
        description="Version segment used to build versioned endpoints such as auth/refresh",
    )
    timeout_seconds: float = Field(
        default=DEFAULT_TIMEOUT_MS / 1000,
        gt=0,
        description="Per-attempt request deadline in seconds",
    )
    refresh_path: str = Field(
        default="auth/refresh",
        description="Refresh endpoint path, relative to {base_url}/{api_version}",
    )
    login_path: str = Field(
        default="/login",
        description="Location handed to the login redirect when a session is invalidated",
    )
    default_headers: dict[str, str] = Field(
        default_factory=dict,
        description="Headers added to every request; caller headers override them",
    )
    token_file: Path | None = Field(
        default=None,
        description="Persist the session to this JSON file. None keeps tokens in memory.",
    )

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL, got {value!r}")
        return value.rstrip("/")

    @property
    def refresh_url(self) -> str:
        return f"{self.base_url}/{self.api_version}/{self.refresh_path.lstrip('/')}"


class RetryPolicyConfig(BaseModel):
    """Thresholds and backoff parameters for caller-level retries.

    ``failure_count`` limits are compared against the zero-based index of the
    failure being judged, so a limit of 3 allows three retries.
    """

    query_max_failures: int = Field(
        default=3, ge=0, description="Retries allowed for a failing query (5xx / unclassified)"
    )
    query_throttled_max_failures: int = Field(
        default=2, ge=0, description="Retries allowed for a query answered with 408 or 429"
    )
    query_network_max_failures: int = Field(
        default=2, ge=0, description="Retries allowed for a query that hit NETWORK_ERROR"
    )
    mutation_max_failures: int = Field(
        default=1, ge=0, description="Retries allowed for a failing mutation (5xx / unclassified)"
    )
    mutation_transport_max_failures: int = Field(
        default=2,
        ge=0,
        description="Retries allowed for a mutation that hit NETWORK_ERROR or a client-side TIMEOUT",
    )
    query_base_delay_seconds: float = Field(default=1.0, gt=0)
    query_max_delay_seconds: float = Field(default=30.0, gt=0)
    mutation_base_delay_seconds: float = Field(default=0.5, gt=0)
    mutation_max_delay_seconds: float = Field(default=5.0, gt=0)
    jitter_fraction: float = Field(
        default=0.1,
        ge=0,
        le=1,
        description="Upper bound of the random jitter, as a fraction of the capped delay",
    )

    @model_validator(mode="after")
    def _check_delay_bounds(self) -> RetryPolicyConfig:
        if self.query_base_delay_seconds > self.query_max_delay_seconds:
            raise ValueError("query_base_delay_seconds must not exceed query_max_delay_seconds")
        if self.mutation_base_delay_seconds > self.mutation_max_delay_seconds:
            raise ValueError(
                "mutation_base_delay_seconds must not exceed mutation_max_delay_seconds"
            )
        return self


class QueryCacheConfig(BaseModel):
    """Stale-while-revalidate cache settings."""

    stale_time_seconds: float = Field(
        default=300.0, ge=0, description="Age after which cached data counts as stale"
    )
    gc_time_seconds: float = Field(
        default=1800.0,
        ge=0,
        description="Unobserved entries older than this are dropped when the cache is pruned",
    )


class SyncConfig(BaseModel):
    """Background synchronization timers. Immutable once constructed."""

    model_config = ConfigDict(frozen=True)

    critical_interval_seconds: float = Field(
        default=120.0, gt=0, description="Interval of the critical-data sweep"
    )
    background_interval_seconds: float = Field(
        default=300.0, gt=0, description="Interval of the sweep over all active queries"
    )
    max_stale_seconds: float = Field(
        default=900.0, gt=0, description="Entries older than this are refetched even if not marked stale"
    )
    critical_prefixes: tuple[tuple[str, ...], ...] = Field(
        default=(("dashboard",), ("notifications",)),
        description="Query-key prefixes refreshed by the critical timer",
    )


class ConnectivityConfig(BaseModel):
    """Active connectivity probe settings."""

    enabled: bool = Field(default=True, description="Run the periodic ping probe")
    ping_url: str | None = Field(
        default=None,
        description="URL probed with HEAD. None uses {base_url}/ping.",
    )
    interval_seconds: float = Field(default=30.0, gt=0)
    timeout_seconds: float = Field(default=5.0, gt=0)


class LoggingConfig(BaseModel):
    """Logging output settings, passed to ``configure_logging``."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "console", "both"] = "console"
    file_path: Path | None = None
    max_file_size_mb: int = Field(default=10, ge=1)
    backup_count: int = Field(default=3, ge=0)

    @model_validator(mode="after")
    def _file_required_for_both(self) -> LoggingConfig:
        if self.format == "both" and self.file_path is None:
            raise ValueError("logging.file_path is required when format is 'both'")
        return self


class DashApiConfig(BaseModel):
    """Top-level configuration."""

    client: ClientConfig = Field(default_factory=ClientConfig)
    retry: RetryPolicyConfig = Field(default_factory=RetryPolicyConfig)
    cache: QueryCacheConfig = Field(default_factory=QueryCacheConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    connectivity: ConnectivityConfig = Field(default_factory=ConnectivityConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def ping_url(self) -> str:
        return self.connectivity.ping_url or f"{self.client.base_url}/ping"


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    """Translate ``API_*`` environment variables into client config fields."""
    overrides: dict[str, Any] = {}
    if environ.get("API_BASE_URL"):
        overrides["base_url"] = environ["API_BASE_URL"]
    if environ.get("API_VERSION"):
        overrides["api_version"] = environ["API_VERSION"]
    raw_timeout = environ.get("API_TIMEOUT")
    if raw_timeout:
        try:
            timeout_ms = int(raw_timeout)
        except ValueError as e:
            raise ConfigurationError(
                f"API_TIMEOUT must be an integer number of milliseconds, got {raw_timeout!r}"
            ) from e
        overrides["timeout_seconds"] = timeout_ms / 1000
    return overrides


def load_config(
    config_file: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> DashApiConfig:
    """Load configuration from an optional YAML file plus environment overrides.

    Args:
        config_file: YAML file to read. A missing file yields defaults.
        environ: Environment mapping; defaults to ``os.environ``.

    Raises:
        ConfigurationError: If the file is not valid YAML or any value fails
            validation.
    """
    env = os.environ if environ is None else environ
    data: dict[str, Any] = {}

    if config_file is not None:
        path = config_file.expanduser()
        if path.exists():
            try:
                with open(path) as f:
                    loaded = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
            if not isinstance(loaded, dict):
                raise ConfigurationError(f"Top level of {path} must be a mapping")
            data = loaded
            _logger.debug("config.loaded", path=str(path))
        else:
            _logger.warning("config.file_missing", path=str(path))

    overrides = _env_overrides(env)
    if overrides:
        client_data = data.get("client") or {}
        if not isinstance(client_data, dict):
            raise ConfigurationError("'client' section must be a mapping")
        data = {**data, "client": {**client_data, **overrides}}

    try:
        return DashApiConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


__all__ = [
    "ClientConfig",
    "ConnectivityConfig",
    "DEFAULT_API_VERSION",
    "DEFAULT_BASE_URL",
    "DEFAULT_TIMEOUT_MS",
    "DashApiConfig",
    "LoggingConfig",
    "QueryCacheConfig",
    "RetryPolicyConfig",
    "SyncConfig",
    "load_config",
]
