from __future__ import annotations

from typing import Literal

import structlog
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from whisper_core.circuit_breaker import CircuitBreakerConfig
from whisper_core.logging import configure_structlog, get_log_level_value
from whisper_core.retry import RetryBackoffPolicy

Dependency = Literal["credentials", "llm", "gmail"]
DEPENDENCIES: tuple[Dependency, ...] = ("credentials", "llm", "gmail")


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(env_prefix=prefix, case_sensitive=False)


class CoreSettings(BaseSettings):
    """Settings for the assistant's dependency breakers and logging.

    Every field can be set from the environment with a ``WHISPER_`` prefix,
    for example ``WHISPER_GMAIL_FAILURE_THRESHOLD=6``.
    """

    model_config = prefixed_settings_config("WHISPER_")

    log_level: str = "INFO"
    service_name: str = "email-whisperer"
    breaker_auto_half_open: bool = False

    retry_attempts: int | None = None
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 5.0

    credentials_failure_threshold: int = 3
    credentials_reset_timeout_ms: int = 10_000
    credentials_call_timeout_seconds: float = 10.0

    llm_failure_threshold: int = 5
    llm_reset_timeout_ms: int = 30_000
    llm_call_timeout_seconds: float = 60.0

    gmail_failure_threshold: int = 4
    gmail_reset_timeout_ms: int = 20_000
    gmail_call_timeout_seconds: float = 30.0

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> object:
        if not isinstance(value, str):
            return value
        normalized = value.strip().upper()
        get_log_level_value(normalized)
        return normalized

    @model_validator(mode="after")
    def _validate_core_settings(self) -> CoreSettings:
        for dependency in DEPENDENCIES:
            if getattr(self, f"{dependency}_failure_threshold") < 1:
                raise ValueError(f"{dependency}_failure_threshold must be >= 1")
            if getattr(self, f"{dependency}_reset_timeout_ms") < 1:
                raise ValueError(f"{dependency}_reset_timeout_ms must be >= 1")
            if getattr(self, f"{dependency}_call_timeout_seconds") <= 0:
                raise ValueError(f"{dependency}_call_timeout_seconds must be > 0")

        if self.retry_attempts is not None and self.retry_attempts < 1:
            raise ValueError("retry_attempts must be >= 1 when provided")
        if self.retry_min_seconds < 0:
            raise ValueError("retry_min_seconds must be >= 0")
        if self.retry_max_seconds < self.retry_min_seconds:
            raise ValueError("retry_max_seconds must be >= retry_min_seconds")
        return self

    def breaker_config(self, dependency: Dependency) -> CircuitBreakerConfig:
        """Build the breaker configuration for one dependency."""
        return CircuitBreakerConfig(
            failure_threshold=getattr(self, f"{dependency}_failure_threshold"),
            reset_timeout_ms=getattr(self, f"{dependency}_reset_timeout_ms"),
            auto_half_open=self.breaker_auto_half_open,
        )

    def call_timeout_seconds(self, dependency: Dependency) -> float:
        return float(getattr(self, f"{dependency}_call_timeout_seconds"))

    def retry_policy(self) -> RetryBackoffPolicy | None:
        """Return the retry policy, or ``None`` when retries are disabled."""
        if self.retry_attempts is None:
            return None
        return RetryBackoffPolicy(
            attempts=self.retry_attempts,
            min_seconds=self.retry_min_seconds,
            max_seconds=self.retry_max_seconds,
        )

    def configure_logging(self) -> structlog.stdlib.BoundLogger:
        """Configure structlog from ``log_level`` and ``service_name``."""
        return configure_structlog(log_level=self.log_level, service=self.service_name)
