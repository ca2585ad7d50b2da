"""Shared error types for whisper_core."""


class TransientError(RuntimeError):
    """Generic retry-safe transient dependency failure."""


class DependencyTimeoutError(TransientError):
    """Raised when a bounded dependency call does not settle in time.

    Attributes:
        dependency: Name of the dependency whose call timed out.
        timeout_seconds: Bound that was exceeded.
    """

    def __init__(self, dependency: str, timeout_seconds: float) -> None:
        self.dependency = dependency
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"dependency_timeout: {dependency} timeout_seconds={timeout_seconds:g}"
        )
