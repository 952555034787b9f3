"""Configuration management with validation.

Every run reads its settings from environment variables. Invalid values are
collected and reported together at load time rather than failing halfway
through a run.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConfigurationError
from .guardrails import GuardrailsConfig


# Configuration constants with documented bounds
DEFAULT_API_URL = "https://api.datadoghq.com"

DEFAULT_MAX_CONCURRENCY = 10
MIN_MAX_CONCURRENCY = 1
MAX_MAX_CONCURRENCY = 64  # stay well below platform rate limits

DEFAULT_REQUEST_TIMEOUT_SECONDS = 30
MAX_REQUEST_TIMEOUT_SECONDS = 600

DEFAULT_MAX_RETRIES = 3
MAX_MAX_RETRIES = 10
RETRY_BACKOFF_BASE_SECONDS = 0.5
RETRY_BACKOFF_MAX_SECONDS = 30.0

MAX_PROJECT_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max project file

VALID_API_URL_PATTERN = r"^https?://[A-Za-z0-9.-]+(:\d+)?/?$"


@dataclass(frozen=True)
class Config:
    """Run configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately.
    """

    # Remote platform
    api_url: str = DEFAULT_API_URL
    api_key: str = ""
    app_key: str = ""

    # Paths
    projects_dir: Path = field(default_factory=lambda: Path("projects"))

    # Execution
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES

    # Behavior
    strict_imports: bool = True
    replace_disallowed: bool = False
    dry_run: bool = False

    guardrails: GuardrailsConfig = field(default_factory=GuardrailsConfig)

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not re.match(VALID_API_URL_PATTERN, self.api_url):
            errors.append(f"WATCHKEEPER_API_URL must be an http(s) base URL: {self.api_url}")

        if not self.projects_dir.is_dir():
            errors.append(f"Projects directory does not exist: {self.projects_dir}")

        if not (MIN_MAX_CONCURRENCY <= self.max_concurrency <= MAX_MAX_CONCURRENCY):
            errors.append(
                f"MAX_CONCURRENCY must be between {MIN_MAX_CONCURRENCY} "
                f"and {MAX_MAX_CONCURRENCY}"
            )

        if not (1 <= self.request_timeout_seconds <= MAX_REQUEST_TIMEOUT_SECONDS):
            errors.append(
                f"REQUEST_TIMEOUT must be between 1 and {MAX_REQUEST_TIMEOUT_SECONDS} seconds"
            )

        if not (0 <= self.max_retries <= MAX_MAX_RETRIES):
            errors.append(f"MAX_RETRIES must be between 0 and {MAX_MAX_RETRIES}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    def require_credentials(self) -> None:
        """Fail when the remote platform credentials are missing.

        Only commands that talk to the platform need them; `validate` does not.
        """
        missing = [
            name
            for name, value in (
                ("DATADOG_API_KEY", self.api_key),
                ("DATADOG_APP_KEY", self.app_key),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Missing required credentials: {', '.join(missing)}")

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            WATCHKEEPER_API_URL: Platform base URL (default: https://api.datadoghq.com)
            DATADOG_API_KEY: API key
            DATADOG_APP_KEY: Application key
            PROJECTS_DIR: Directory with project YAML files (default: ./projects)
            MAX_CONCURRENCY: Parallel API calls (default: 10)
            REQUEST_TIMEOUT: Per-request timeout in seconds (default: 30)
            MAX_RETRIES: Retries for transient API errors (default: 3)
            STRICT_IMPORTS: Fail when an imported id does not exist (default: true)
            REPLACE_DISALLOWED: Replace resources whose type changed with
                delete + create instead of failing (default: false)
            DRY_RUN: If "true", plan only (default: false)

        Guardrail variables are documented on GuardrailsConfig.from_env().
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
            api_url=os.environ.get("WATCHKEEPER_API_URL", DEFAULT_API_URL),
            api_key=os.environ.get("DATADOG_API_KEY", ""),
            app_key=os.environ.get("DATADOG_APP_KEY", ""),
            projects_dir=Path(os.environ.get("PROJECTS_DIR", "projects")),
            max_concurrency=get_int("MAX_CONCURRENCY", DEFAULT_MAX_CONCURRENCY),
            request_timeout_seconds=get_int("REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT_SECONDS),
            max_retries=get_int("MAX_RETRIES", DEFAULT_MAX_RETRIES),
            strict_imports=get_bool("STRICT_IMPORTS", True),
            replace_disallowed=get_bool("REPLACE_DISALLOWED", False),
            dry_run=get_bool("DRY_RUN", False),
            guardrails=GuardrailsConfig.from_env(),
        )
