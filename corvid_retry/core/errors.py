"""Error taxonomy for corvid-retry.

Every library error carries an ``ErrorKind`` so that callers (and the
breaker's retry composition) can dispatch on the kind of failure without
relying on class identity.  Operation errors that are filtered out by a
retry predicate, or that arrive while cancellation is active, are never
wrapped: they propagate as the original exception.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class ErrorKind(str, Enum):
    """Machine-readable kinds of library error."""

    CONFIGURATION = "configuration"
    CANCELLED = "cancelled"
    RETRY_EXHAUSTED = "retry_exhausted"
    CIRCUIT_OPEN = "circuit_open"
    HOOK = "hook"


class CorvidRetryError(Exception):
    """Base exception for all corvid-retry errors."""

    kind: ErrorKind | None = None


class ConfigurationError(CorvidRetryError, ValueError):
    """Raised synchronously for invalid retry or breaker configuration.

    Never retried.
    """

    kind = ErrorKind.CONFIGURATION


class RetryCancelledError(CorvidRetryError):
    """Raised when the cancellation token is active.

    Attributes:
        reason: The reason value carried by the cancellation token.
    """

    kind = ErrorKind.CANCELLED

    def __init__(self, reason: object = None) -> None:
        self.reason = reason
        msg = "Operation cancelled"
        if reason is not None:
            msg += f": {reason}"
        super().__init__(msg)


class RetryExhaustedError(CorvidRetryError):
    """Raised when every configured attempt failed.

    Attributes:
        attempts:   Number of attempts consumed (the configured maximum).
        last_error: The error raised by the final attempt.
    """

    kind = ErrorKind.RETRY_EXHAUSTED

    def __init__(self, attempts: int, last_error: BaseException | None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"All {attempts} attempts failed")


class CircuitOpenError(CorvidRetryError):
    """Raised when a circuit breaker rejects a call without invoking it.

    Attributes:
        name:        Name of the breaker that rejected the call.
        failures:    Consecutive failure count at the time of rejection.
        retry_after: Seconds until the breaker will admit a probe.
    """

    kind = ErrorKind.CIRCUIT_OPEN

    def __init__(self, name: str, failures: int, retry_after: float = 0.0) -> None:
        self.name = name
        self.failures = failures
        self.retry_after = max(0.0, retry_after)
        super().__init__(f"Circuit '{name}' is open after {failures} failures — retry after {self.retry_after:.1f}s")


class StateChangeHookError(CorvidRetryError):
    """Raised when a breaker's ``on_state_change`` hook raises.

    The hook error is chained as ``__cause__``.  The transition itself has
    already been committed.  Never retried: a raising hook is a defect in
    caller code, not a transient failure.

    Attributes:
        name:     Name of the breaker whose hook failed.
        previous: State before the transition.
        new:      State after the transition.
    """

    kind = ErrorKind.HOOK

    def __init__(self, name: str, previous: object, new: object) -> None:
        self.name = name
        self.previous = previous
        self.new = new
        old_label = getattr(previous, "value", previous)
        new_label = getattr(new, "value", new)
        super().__init__(f"State-change hook of circuit '{name}' failed on {old_label} -> {new_label}")


def error_kind(exc: BaseException) -> ErrorKind | None:
    """Return the ``ErrorKind`` tag of *exc*, or ``None`` for foreign errors."""
    kind = getattr(exc, "kind", None)
    return kind if isinstance(kind, ErrorKind) else None


class StructuredErrorResponse(BaseModel):
    """Serializable summary of a failure, safe to log or return to callers.

    Foreign exceptions are reported as ``INTERNAL_ERROR`` without their
    message so that operation internals are not leaked.
    """

    error: str
    code: str
    attempts: int | None = None
    failures: int | None = None

    @classmethod
    def from_exception(cls, exc: BaseException) -> "StructuredErrorResponse":
        """Create from an exception, mapping library errors to codes."""
        kind = error_kind(exc)
        if kind is ErrorKind.CIRCUIT_OPEN:
            return cls(error=str(exc), code="CIRCUIT_OPEN", failures=exc.failures)
        if kind is ErrorKind.RETRY_EXHAUSTED:
            return cls(error=str(exc), code="RETRY_EXHAUSTED", attempts=exc.attempts)
        if kind is ErrorKind.CANCELLED:
            return cls(error=str(exc), code="CANCELLED")
        if kind is ErrorKind.CONFIGURATION:
            return cls(error=str(exc), code="CONFIGURATION_ERROR")
        if kind is ErrorKind.HOOK:
            return cls(error=str(exc), code="HOOK_ERROR")
        if isinstance(exc, CorvidRetryError):
            return cls(error=str(exc), code="RETRY_ERROR")
        return cls(error="An internal error occurred", code="INTERNAL_ERROR")
