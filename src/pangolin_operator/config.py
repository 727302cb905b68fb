"""Configuration management with validation.

All settings are read from environment variables once at startup and
validated immediately so a misconfigured operator fails before it starts
reconciling anything.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_REQUEUE_INTERVAL_SECONDS = 60
MIN_REQUEUE_INTERVAL_SECONDS = 5
MAX_REQUEUE_INTERVAL_SECONDS = 3600

DEFAULT_MAX_CONCURRENT_RECONCILES = 4
MAX_CONCURRENT_RECONCILES_LIMIT = 64

DEFAULT_HTTP_TIMEOUT_SECONDS = 30
MAX_HTTP_TIMEOUT_SECONDS = 300

DEFAULT_STATUS_UPDATE_RETRIES = 3
MAX_STATUS_UPDATE_RETRIES = 10

# Manifest limits
MAX_MANIFEST_FILE_SIZE_BYTES = 1024 * 1024  # 1MB per manifest file

# Control-plane error excerpts are truncated to this many bytes
MAX_ERROR_BODY_BYTES = 1024

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
VALID_LOG_FORMATS = ("json", "text")

# Kubernetes-style namespace names
VALID_NAMESPACE_PATTERN = r"^[a-z0-9]([-a-z0-9]{0,61}[a-z0-9])?$"


@dataclass(frozen=True)
class Config:
    """Operator configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Empty string watches every namespace
    watch_namespace: str = ""

    # Timing
    requeue_interval_seconds: int = DEFAULT_REQUEUE_INTERVAL_SECONDS
    http_timeout_seconds: int = DEFAULT_HTTP_TIMEOUT_SECONDS

    # Workers
    max_concurrent_reconciles: int = DEFAULT_MAX_CONCURRENT_RECONCILES
    status_update_retries: int = DEFAULT_STATUS_UPDATE_RETRIES

    # Local mode: manifests to seed the in-memory store with
    manifests_dir: Path | None = None

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        import re

        errors: list[str] = []

        if self.watch_namespace and not re.match(VALID_NAMESPACE_PATTERN, self.watch_namespace):
            errors.append(
                f"WATCH_NAMESPACE must match pattern {VALID_NAMESPACE_PATTERN}: "
                f"{self.watch_namespace}"
            )

        if not (
            MIN_REQUEUE_INTERVAL_SECONDS
            <= self.requeue_interval_seconds
            <= MAX_REQUEUE_INTERVAL_SECONDS
        ):
            errors.append(
                f"REQUEUE_INTERVAL must be between {MIN_REQUEUE_INTERVAL_SECONDS} "
                f"and {MAX_REQUEUE_INTERVAL_SECONDS} seconds"
            )

        if not (1 <= self.http_timeout_seconds <= MAX_HTTP_TIMEOUT_SECONDS):
            errors.append(f"HTTP_TIMEOUT must be between 1 and {MAX_HTTP_TIMEOUT_SECONDS} seconds")

        if not (1 <= self.max_concurrent_reconciles <= MAX_CONCURRENT_RECONCILES_LIMIT):
            errors.append(
                f"MAX_CONCURRENT_RECONCILES must be between 1 and {MAX_CONCURRENT_RECONCILES_LIMIT}"
            )

        if not (1 <= self.status_update_retries <= MAX_STATUS_UPDATE_RETRIES):
            errors.append(
                f"STATUS_UPDATE_RETRIES must be between 1 and {MAX_STATUS_UPDATE_RETRIES}"
            )

        if self.manifests_dir is not None and not self.manifests_dir.exists():
            errors.append(f"Manifests directory does not exist: {self.manifests_dir}")

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(f"LOG_LEVEL must be one of {list(VALID_LOG_LEVELS)}: {self.log_level}")

        if self.log_format not in VALID_LOG_FORMATS:
            errors.append(f"LOG_FORMAT must be one of {list(VALID_LOG_FORMATS)}: {self.log_format}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def requeue_after(self) -> float:
        """Delay applied to Error and Waiting outcomes, in seconds."""
        return float(self.requeue_interval_seconds)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            WATCH_NAMESPACE: Only reconcile objects in this namespace (default: all)
            REQUEUE_INTERVAL: Seconds before an Error/Waiting object is re-checked (default: 60)
            HTTP_TIMEOUT: Timeout for control-plane requests in seconds (default: 30)
            MAX_CONCURRENT_RECONCILES: Worker count (default: 4)
            STATUS_UPDATE_RETRIES: Attempts for a conflicting status write (default: 3)
            MANIFESTS_DIR: YAML manifests to load into the local store (optional)
            LOG_LEVEL: Root log level (default: INFO)
            LOG_FORMAT: "json" or "text" (default: json)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        manifests_dir = os.environ.get("MANIFESTS_DIR")

        return cls(
            watch_namespace=os.environ.get("WATCH_NAMESPACE", ""),
            requeue_interval_seconds=get_int("REQUEUE_INTERVAL", DEFAULT_REQUEUE_INTERVAL_SECONDS),
            http_timeout_seconds=get_int("HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT_SECONDS),
            max_concurrent_reconciles=get_int(
                "MAX_CONCURRENT_RECONCILES", DEFAULT_MAX_CONCURRENT_RECONCILES
            ),
            status_update_retries=get_int("STATUS_UPDATE_RETRIES", DEFAULT_STATUS_UPDATE_RETRIES),
            manifests_dir=Path(manifests_dir) if manifests_dir else None,
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            log_format=os.environ.get("LOG_FORMAT", "json").lower(),
        )
