"""Configuration management with validation.

Invalid configuration fails at load time, before any scope is created or
any provider client is built.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass

from .clients import DEFAULT_PROVIDER_TIMEOUT_SECONDS


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


MIN_PROVIDER_TIMEOUT_SECONDS = 30
MAX_PROVIDER_TIMEOUT_SECONDS = 7200
DEFAULT_STAGE = "dev"

# Input validation patterns
VALID_NAME_PATTERN = r"^[a-zA-Z0-9][a-zA-Z0-9_-]{0,62}$"
VALID_SUBSCRIPTION_ID_PATTERN = r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"


@dataclass(frozen=True)
class EngineConfig:
    """Run configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError listing every problem at once.
    """

    app_name: str
    stage: str = DEFAULT_STAGE

    # Behavior
    local: bool = False
    adopt: bool = False

    # Azure
    subscription_id: str | None = None
    client_id: str | None = None
    provider_timeout_seconds: int = DEFAULT_PROVIDER_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        errors: list[str] = []

        if not self.app_name:
            errors.append("APP_NAME is required")
        elif not re.match(VALID_NAME_PATTERN, self.app_name):
            errors.append(f"APP_NAME must match pattern {VALID_NAME_PATTERN}: {self.app_name}")

        if not self.stage:
            errors.append("STAGE cannot be empty")
        elif not re.match(VALID_NAME_PATTERN, self.stage):
            errors.append(f"STAGE must match pattern {VALID_NAME_PATTERN}: {self.stage}")

        # Local runs never talk to Azure
        if not self.subscription_id:
            if not self.local:
                errors.append("AZURE_SUBSCRIPTION_ID is required unless LOCAL is set")
        elif not re.match(VALID_SUBSCRIPTION_ID_PATTERN, self.subscription_id.lower()):
            errors.append(f"AZURE_SUBSCRIPTION_ID must be a valid GUID: {self.subscription_id}")

        if not (
            MIN_PROVIDER_TIMEOUT_SECONDS
            <= self.provider_timeout_seconds
            <= MAX_PROVIDER_TIMEOUT_SECONDS
        ):
            errors.append(
                f"PROVIDER_TIMEOUT must be between {MIN_PROVIDER_TIMEOUT_SECONDS} "
                f"and {MAX_PROVIDER_TIMEOUT_SECONDS} seconds"
            )

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(
        cls,
        *,
        app_name: str | None = None,
        stage: str | None = None,
        local: bool | None = None,
        adopt: bool | None = None,
    ) -> EngineConfig:
        """Load configuration from environment variables.

        Keyword arguments override the environment (used by CLI flags).

        Environment Variables:
            APP_NAME: Application name, first segment of every logical path
            STAGE: Stage name (default: $USER, else "dev")
            LOCAL: If "true", synthesize outputs without calling Azure (default: false)
            ADOPT: If "true", adopt pre-existing resources by default (default: false)
            AZURE_SUBSCRIPTION_ID: Target Azure subscription (required unless LOCAL)
            AZURE_CLIENT_ID: User-assigned managed identity client ID (optional)
            PROVIDER_TIMEOUT: Timeout for long-running Azure operations in seconds (default: 1800)
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

        default_stage = os.environ.get("STAGE") or os.environ.get("USER") or DEFAULT_STAGE

        return cls(
            app_name=app_name or os.environ.get("APP_NAME", ""),
            stage=stage or default_stage,
            local=get_bool("LOCAL", False) if local is None else local,
            adopt=get_bool("ADOPT", False) if adopt is None else adopt,
            subscription_id=os.environ.get("AZURE_SUBSCRIPTION_ID") or None,
            client_id=os.environ.get("AZURE_CLIENT_ID") or None,
            provider_timeout_seconds=get_int("PROVIDER_TIMEOUT", DEFAULT_PROVIDER_TIMEOUT_SECONDS),
        )
