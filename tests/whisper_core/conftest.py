from __future__ import annotations

import pytest

import whisper_core.circuit_breaker.breaker as breaker_mod
from tests.whisper_core.support.fakes import (
    ControlledSleep,
    FakeClock,
    FakeLogger,
    RecordingMonitor,
)
from whisper_core.circuit_breaker import CircuitBreakerRegistry


@pytest.fixture
def fake_logger() -> FakeLogger:
    """Provide a fresh structured logger test double per test."""
    return FakeLogger()


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    """Freeze breaker time at a fixed instant that tests advance manually."""
    fake = FakeClock()
    monkeypatch.setattr(breaker_mod, "_utcnow", fake.now)
    return fake


@pytest.fixture
def monitor() -> RecordingMonitor:
    return RecordingMonitor()


@pytest.fixture
def controlled_sleep() -> ControlledSleep:
    return ControlledSleep()


@pytest.fixture
def registry() -> CircuitBreakerRegistry:
    """Provide an isolated breaker registry per test."""
    return CircuitBreakerRegistry()
