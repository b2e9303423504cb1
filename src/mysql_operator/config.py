"""Configuration management with validation.

Configuration is read from environment variables and validated once at
startup so that misconfiguration fails before any Azure call is made.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_POLL_INTERVAL_SECONDS = 10
MIN_POLL_INTERVAL_SECONDS = 1
MAX_POLL_INTERVAL_SECONDS = 300

# Invocation deadline: when it expires the cancellation event fires
DEFAULT_OPERATION_TIMEOUT_SECONDS = 3600
MIN_OPERATION_TIMEOUT_SECONDS = 60
MAX_OPERATION_TIMEOUT_SECONDS = 4 * 3600

DEFAULT_SPEC_FILE = "/specs/mysql-server.yaml"
DEFAULT_STATE_FILE = "/state/mysql-server.json"

# Input validation patterns
VALID_SUBSCRIPTION_ID_PATTERN = r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"


@dataclass(frozen=True)
class Config:
    """Operator configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Required fields
    subscription_id: str

    # Paths
    spec_file: Path = field(default_factory=lambda: Path(DEFAULT_SPEC_FILE))
    state_file: Path = field(default_factory=lambda: Path(DEFAULT_STATE_FILE))

    # Timing
    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS
    operation_timeout_seconds: int = DEFAULT_OPERATION_TIMEOUT_SECONDS

    # Behavior
    require_import: bool = False
    allow_replace: bool = False

    # User-assigned managed identity; system-assigned when None
    client_id: str | None = None

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.subscription_id:
            errors.append("AZURE_SUBSCRIPTION_ID is required")
        elif not re.match(VALID_SUBSCRIPTION_ID_PATTERN, self.subscription_id.lower()):
            errors.append(f"AZURE_SUBSCRIPTION_ID must be a valid GUID: {self.subscription_id}")

        if not (
            MIN_POLL_INTERVAL_SECONDS <= self.poll_interval_seconds <= MAX_POLL_INTERVAL_SECONDS
        ):
            errors.append(
                f"POLL_INTERVAL must be between {MIN_POLL_INTERVAL_SECONDS} "
                f"and {MAX_POLL_INTERVAL_SECONDS} seconds"
            )

        if not (
            MIN_OPERATION_TIMEOUT_SECONDS
            <= self.operation_timeout_seconds
            <= MAX_OPERATION_TIMEOUT_SECONDS
        ):
            errors.append(
                f"OPERATION_TIMEOUT must be between {MIN_OPERATION_TIMEOUT_SECONDS} "
                f"and {MAX_OPERATION_TIMEOUT_SECONDS} seconds"
            )

        if not self.spec_file.exists():
            errors.append(f"Spec file does not exist: {self.spec_file}")

        if not self.state_file.parent.is_dir():
            errors.append(f"State directory does not exist: {self.state_file.parent}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            AZURE_SUBSCRIPTION_ID: Subscription holding the MySQL server
            SPEC_FILE: Desired state YAML (default: /specs/mysql-server.yaml)
            STATE_FILE: Local state JSON (default: /state/mysql-server.json)
            POLL_INTERVAL: Seconds between operation status checks (default: 10)
            OPERATION_TIMEOUT: Invocation deadline in seconds (default: 3600)
            REQUIRE_IMPORT: If "true", refuse to create over an existing server
            ALLOW_REPLACE: If "true", replace the server when immutable fields change
            AZURE_CLIENT_ID: Client ID of a user-assigned managed identity
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        return cls(
            subscription_id=os.environ.get("AZURE_SUBSCRIPTION_ID", ""),
            spec_file=Path(os.environ.get("SPEC_FILE", DEFAULT_SPEC_FILE)),
            state_file=Path(os.environ.get("STATE_FILE", DEFAULT_STATE_FILE)),
            poll_interval_seconds=get_int("POLL_INTERVAL", DEFAULT_POLL_INTERVAL_SECONDS),
            operation_timeout_seconds=get_int(
                "OPERATION_TIMEOUT", DEFAULT_OPERATION_TIMEOUT_SECONDS
            ),
            require_import=get_bool("REQUIRE_IMPORT", False),
            allow_replace=get_bool("ALLOW_REPLACE", False),
            client_id=os.environ.get("AZURE_CLIENT_ID") or None,
        )
