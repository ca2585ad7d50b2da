from __future__ import annotations

import httpx

from whisper_core.circuit_breaker import CircuitOpenError
from whisper_core.errors import DependencyTimeoutError

SERVICE_UNAVAILABLE_MESSAGE = (
    "The service is currently unavailable. It should be back shortly. "
    "Please try again in a few minutes."
)
HIGH_DEMAND_MESSAGE = (
    "I'm experiencing high demand right now. Please try again in a few moments."
)
REAUTHORIZE_MESSAGE = "I need permission to access your Gmail. Please sign in again."
DEFAULT_FAILURE_MESSAGE = (
    "I'm sorry, I encountered an issue connecting to Gmail. "
    "Please try again in a moment."
)

RATE_LIMIT_STATUSES = frozenset({429})
AUTH_STATUSES = frozenset({401, 403})


def describe_failure(error: BaseException) -> str:
    """Translate a dependency failure into a message for the chat user."""
    if isinstance(error, CircuitOpenError):
        return SERVICE_UNAVAILABLE_MESSAGE
    if isinstance(
        error, (DependencyTimeoutError, TimeoutError, httpx.TimeoutException)
    ):
        return HIGH_DEMAND_MESSAGE
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status in RATE_LIMIT_STATUSES:
            return HIGH_DEMAND_MESSAGE
        if status in AUTH_STATUSES:
            return REAUTHORIZE_MESSAGE

    text = str(error).lower()
    if "rate limit" in text or "timeout" in text:
        return HIGH_DEMAND_MESSAGE
    if "authorization" in text or "authentication" in text:
        return REAUTHORIZE_MESSAGE
    return DEFAULT_FAILURE_MESSAGE
