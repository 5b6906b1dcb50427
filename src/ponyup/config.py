"""Configuration management with validation.

Everything ponyup needs from the process environment is read once, at
startup, into a frozen Config. Nothing below the CLI looks at os.environ.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class LogFormat(str, Enum):
    """Supported log output formats."""

    TEXT = "text"
    JSON = "json"


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_PROFILE = "staging"
DEFAULT_DECLARATIONS_FILE = "Ponyfile.yaml"
DEFAULT_PROFILES_FILE = "~/.ponyup/profiles.yaml"

DEFAULT_READY_TIMEOUT_SECONDS = 600
MIN_READY_TIMEOUT_SECONDS = 1
MAX_READY_TIMEOUT_SECONDS = 7200
DEFAULT_READY_POLL_INTERVAL_SECONDS = 5

DEFAULT_SSH_USER = "ubuntu"
DEFAULT_IDENTITY_DIR = "~/.ssh"
DEFAULT_KNIFE_COMMAND = "knife"

# Security constraints - enforced limits to prevent abuse
MAX_DECLARATION_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max declarations file
MAX_PROFILES_FILE_SIZE_BYTES = 256 * 1024

# Input validation patterns
VALID_PROFILE_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,63}$"
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Config:
    """Runtime configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-run.
    """

    # Credential profile selector
    profile: str = DEFAULT_PROFILE

    # Paths
    declarations_file: Path = field(default_factory=lambda: Path(DEFAULT_DECLARATIONS_FILE))
    profiles_file: Path = field(
        default_factory=lambda: Path(DEFAULT_PROFILES_FILE).expanduser()
    )
    identity_dir: Path = field(default_factory=lambda: Path(DEFAULT_IDENTITY_DIR).expanduser())

    # Timing
    ready_timeout_seconds: int = DEFAULT_READY_TIMEOUT_SECONDS
    ready_poll_interval_seconds: int = DEFAULT_READY_POLL_INTERVAL_SECONDS
    provision_timeout_seconds: int | None = None

    # Provisioning
    ssh_user: str = DEFAULT_SSH_USER
    knife_command: str = DEFAULT_KNIFE_COMMAND

    # Logging
    log_format: LogFormat = LogFormat.TEXT
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        """Validate configuration after initialization.

        All inputs are validated at the boundary (fail-fast).
        """
        import re

        errors: list[str] = []

        if not self.profile:
            errors.append("PONYUP_PROFILE must not be empty")
        elif not re.match(VALID_PROFILE_PATTERN, self.profile):
            errors.append(
                f"PONYUP_PROFILE must match pattern {VALID_PROFILE_PATTERN}: {self.profile}"
            )

        # Timing validation
        if not (
            MIN_READY_TIMEOUT_SECONDS <= self.ready_timeout_seconds <= MAX_READY_TIMEOUT_SECONDS
        ):
            errors.append(
                f"PONYUP_READY_TIMEOUT must be between {MIN_READY_TIMEOUT_SECONDS} "
                f"and {MAX_READY_TIMEOUT_SECONDS} seconds"
            )

        if self.ready_poll_interval_seconds < 1:
            errors.append("PONYUP_READY_POLL_INTERVAL must be at least 1 second")
        elif self.ready_poll_interval_seconds >= self.ready_timeout_seconds:
            errors.append("PONYUP_READY_POLL_INTERVAL must be shorter than PONYUP_READY_TIMEOUT")

        if self.provision_timeout_seconds is not None and self.provision_timeout_seconds < 1:
            errors.append("PONYUP_PROVISION_TIMEOUT must be at least 1 second when set")

        if not self.ssh_user:
            errors.append("PONYUP_SSH_USER must not be empty")

        if not self.knife_command:
            errors.append("PONYUP_KNIFE must not be empty")

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(
                f"PONYUP_LOG_LEVEL must be one of {list(VALID_LOG_LEVELS)}: {self.log_level}"
            )

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    def identity_file(self, key_name: str) -> Path:
        """Path of the private key used to reach hosts launched with ``key_name``."""
        return self.identity_dir / f"{key_name}.pem"

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            PONYUP_PROFILE: Credential profile to use (default: staging)
            PONYUP_PROFILES_FILE: YAML file with credential profiles
                (default: ~/.ponyup/profiles.yaml)
            PONYUP_FILE: Resource declarations file (default: Ponyfile.yaml)
            PONYUP_READY_TIMEOUT: Max seconds to wait for a new instance (default: 600)
            PONYUP_READY_POLL_INTERVAL: Seconds between readiness checks (default: 5)
            PONYUP_PROVISION_TIMEOUT: Max seconds for a bootstrap run (default: unbounded)
            PONYUP_SSH_USER: Remote user for bootstrap (default: ubuntu)
            PONYUP_IDENTITY_DIR: Directory holding <key_name>.pem files (default: ~/.ssh)
            PONYUP_KNIFE: knife executable (default: knife)
            PONYUP_LOG_FORMAT: text or json (default: text)
            PONYUP_LOG_LEVEL: Root log level (default: INFO)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_optional_int(key: str) -> int | None:
            value = os.environ.get(key)
            if not value:
                return None
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_log_format(value: str | None) -> LogFormat:
            if not value:
                return LogFormat.TEXT
            try:
                return LogFormat(value.lower())
            except ValueError as e:
                valid = [f.value for f in LogFormat]
                raise ConfigurationError(
                    f"PONYUP_LOG_FORMAT must be one of {valid}: {value}"
                ) from e

        return cls(
            profile=os.environ.get("PONYUP_PROFILE") or DEFAULT_PROFILE,
            declarations_file=Path(os.environ.get("PONYUP_FILE", DEFAULT_DECLARATIONS_FILE)),
            profiles_file=Path(
                os.environ.get("PONYUP_PROFILES_FILE", DEFAULT_PROFILES_FILE)
            ).expanduser(),
            identity_dir=Path(
                os.environ.get("PONYUP_IDENTITY_DIR", DEFAULT_IDENTITY_DIR)
            ).expanduser(),
            ready_timeout_seconds=get_int("PONYUP_READY_TIMEOUT", DEFAULT_READY_TIMEOUT_SECONDS),
            ready_poll_interval_seconds=get_int(
                "PONYUP_READY_POLL_INTERVAL", DEFAULT_READY_POLL_INTERVAL_SECONDS
            ),
            provision_timeout_seconds=get_optional_int("PONYUP_PROVISION_TIMEOUT"),
            ssh_user=os.environ.get("PONYUP_SSH_USER", DEFAULT_SSH_USER),
            knife_command=os.environ.get("PONYUP_KNIFE", DEFAULT_KNIFE_COMMAND),
            log_format=get_log_format(os.environ.get("PONYUP_LOG_FORMAT")),
            log_level=os.environ.get("PONYUP_LOG_LEVEL", "INFO"),
        )
