from __future__ import annotations

import logging
import sys
from typing import Any, cast

import pytest
from pydantic import ValidationError

from whisper_core.circuit_breaker import CircuitBreakerConfig
import whisper_core.settings as settings_mod
from whisper_core.settings import CoreSettings


def _build_settings(**overrides: object) -> CoreSettings:
    return CoreSettings(**cast(Any, overrides))


def test_core_settings_defaults_match_dependency_profiles() -> None:
    settings = _build_settings()

    assert settings.breaker_config("credentials") == CircuitBreakerConfig(
        failure_threshold=3, reset_timeout_ms=10_000
    )
    assert settings.breaker_config("llm") == CircuitBreakerConfig(
        failure_threshold=5, reset_timeout_ms=30_000
    )
    assert settings.breaker_config("gmail") == CircuitBreakerConfig(
        failure_threshold=4, reset_timeout_ms=20_000
    )
    assert settings.call_timeout_seconds("gmail") == 30.0
    assert settings.retry_policy() is None


def test_core_settings_reads_prefixed_environment(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("WHISPER_GMAIL_FAILURE_THRESHOLD", "7")
    monkeypatch.setenv("whisper_breaker_auto_half_open", "true")
    monkeypatch.setenv("WHISPER_LOG_LEVEL", " debug ")

    settings = CoreSettings()

    assert settings.log_level == "DEBUG"
    config = settings.breaker_config("gmail")
    assert config.failure_threshold == 7
    assert config.auto_half_open is True


def test_core_settings_builds_retry_policy_when_attempts_set() -> None:
    settings = _build_settings(
        retry_attempts=3, retry_min_seconds=0.1, retry_max_seconds=2.0
    )

    policy = settings.retry_policy()

    assert policy is not None
    assert policy.attempts == 3
    assert policy.min_seconds == 0.1
    assert policy.max_seconds == 2.0


def test_core_settings_rejects_unknown_log_level() -> None:
    with pytest.raises(ValidationError):
        _build_settings(log_level="TRACE")


@pytest.mark.parametrize(
    "overrides",
    [
        {"credentials_failure_threshold": 0},
        {"llm_reset_timeout_ms": 0},
        {"gmail_call_timeout_seconds": 0},
        {"retry_attempts": 0},
        {"retry_min_seconds": -1.0},
        {"retry_min_seconds": 2.0, "retry_max_seconds": 1.0},
    ],
)
def test_core_settings_rejects_invalid_bounds(overrides: dict[str, object]) -> None:
    with pytest.raises(ValidationError):
        _build_settings(**overrides)


def test_configure_logging_passes_level_and_service(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    received: list[dict[str, object]] = []

    def _record(**kwargs: object) -> None:
        received.append(kwargs)

    monkeypatch.setattr(settings_mod, "configure_structlog", _record)

    settings = _build_settings(log_level="warning", service_name="whisper-test")
    settings.configure_logging()

    assert received == [{"log_level": "WARNING", "service": "whisper-test"}]


def test_configure_logging_applies_root_level(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(sys.stderr, "isatty", lambda: False, raising=False)
    monkeypatch.setenv("WHISPER_LOG_LEVEL", "debug")

    logger = CoreSettings().configure_logging()

    assert logger is not None
    assert logging.getLogger().level == logging.DEBUG
    assert len(logging.getLogger().handlers) == 1
