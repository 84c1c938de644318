"""Configuration Management - Retry, Timeout and Isolation Settings.

Provides environment-aware configuration with validation. Values load from
environment variables (prefix ``BOUNDED_RETRY_``, nested delimiter ``__``)
and an optional .env file. Timeouts are configured in milliseconds and
exposed in seconds for the runtime API.
"""

from enum import Enum

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from bounded_retry.core.budget import default_overall_timeout
from bounded_retry.core.isolation import DEFAULT_STARTUP_TIMEOUT


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class RetryPolicy(BaseSettings):
    """Retry and timeout policy for one operation.

    Usage:
        policy = RetryPolicy(retries=5, per_attempt_timeout_ms=500)
        policy.overall_timeout  # 5.0 seconds (5 * 0.5 + 5 * 0.5 grace)
    """

    model_config = SettingsConfigDict(env_prefix="BOUNDED_RETRY_RETRY__")

    retries: int = Field(default=3, ge=1, description="Maximum attempts")
    per_attempt_timeout_ms: int = Field(
        default=30000, gt=0, description="Hard ceiling on one attempt (ms)"
    )
    overall_timeout_ms: int | None = Field(
        default=None,
        gt=0,
        description="Ceiling on all attempts (ms), defaults from retries",
    )
    enforce_timings: bool = Field(
        default=True,
        description="Disable to suspend both deadlines while debugging interactively",
    )

    @property
    def per_attempt_timeout(self) -> float:
        """Per-attempt timeout in seconds."""
        return self.per_attempt_timeout_ms / 1000.0

    @property
    def overall_timeout(self) -> float:
        """Overall timeout in seconds, defaulted when not configured."""
        if self.overall_timeout_ms is not None:
            return self.overall_timeout_ms / 1000.0
        return default_overall_timeout(self.retries, self.per_attempt_timeout)


class IsolationConfig(BaseSettings):
    """Process isolation settings."""

    model_config = SettingsConfigDict(env_prefix="BOUNDED_RETRY_ISOLATION__")

    enabled: bool = Field(
        default=False, description="Run each attempt in a child process"
    )
    startup_timeout_ms: int = Field(
        default=int(DEFAULT_STARTUP_TIMEOUT * 1000),
        gt=0,
        description="Handshake window for a child process (ms)",
    )
    python_executable: str | None = Field(
        default=None, description="Interpreter for child processes"
    )

    @property
    def startup_timeout(self) -> float:
        """Handshake window in seconds."""
        return self.startup_timeout_ms / 1000.0


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="BOUNDED_RETRY_LOGGING__")

    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    log_format: str = Field(
        default="console", description="Log format: json or console"
    )

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Accept only the supported renderers."""
        v = v.lower()
        if v not in ("json", "console"):
            raise ValueError("log_format must be 'json' or 'console'")
        return v

    @property
    def json_format(self) -> bool:
        return self.log_format == "json"


class Settings(BaseSettings):
    """Main application settings.

    Hierarchical configuration with validation. Loads from environment
    variables and .env file.

    Usage:
        from bounded_retry.core.config import get_settings
        settings = get_settings()
    """

    model_config = SettingsConfigDict(
        env_prefix="BOUNDED_RETRY_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    isolation: IsolationConfig = Field(default_factory=IsolationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def get_summary(self) -> str:
        """Get configuration summary."""
        overall = (
            f"{self.retry.overall_timeout_ms} ms"
            if self.retry.overall_timeout_ms is not None
            else f"{self.retry.overall_timeout * 1000:.0f} ms (default)"
        )
        return f"""
Bounded Retry Configuration
===========================
Retry:
  - Retries: {self.retry.retries}
  - Per-attempt Timeout: {self.retry.per_attempt_timeout_ms} ms
  - Overall Timeout: {overall}
  - Enforce Timings: {self.retry.enforce_timings}

Isolation:
  - Enabled: {self.isolation.enabled}
  - Startup Timeout: {self.isolation.startup_timeout_ms} ms

Logging:
  - Level: {self.logging.log_level.value}
  - Format: {self.logging.log_format}
"""


# Global settings instance (singleton pattern)
_settings: Settings | None = None


def get_settings(force_reload: bool = False) -> Settings:
    """Get application settings (singleton).

    Args:
        force_reload: Force reload settings from environment

    Returns:
        Settings instance

    """
    global _settings
    if _settings is None or force_reload:
        _settings = Settings()
    return _settings
