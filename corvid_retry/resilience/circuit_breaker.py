"""Async circuit breaker.

Implements the standard three-state circuit breaker:

    CLOSED    →  (failure_threshold consecutive failures)  →  OPEN
    OPEN      →  (reset_timeout elapsed, on next access)   →  HALF_OPEN
    HALF_OPEN →  (half_open_successes probe successes)     →  CLOSED
    HALF_OPEN →  (any probe failure)                       →  OPEN

There is no background timer: the OPEN → HALF_OPEN transition is evaluated
lazily whenever ``state`` is read or a call is attempted.  An idle breaker
therefore keeps reporting OPEN until somebody looks at it.

Each protected target gets its own ``CircuitBreaker``; use
``CircuitBreakerRegistry`` to keep one per named target.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

from corvid_retry.core.config import Settings, get_settings
from corvid_retry.core.errors import (
    CircuitOpenError,
    ConfigurationError,
    ErrorKind,
    StateChangeHookError,
    error_kind,
)
from corvid_retry.resilience.retry import (
    Operation,
    RetryOptions,
    RetryResult,
    _invoke,
    _resolve_options,
    retry,
)

logger = logging.getLogger(__name__)

# Errors that end call_with_retry immediately, whatever the caller's retry_if says.
_NEVER_RETRIED = frozenset({ErrorKind.CIRCUIT_OPEN, ErrorKind.HOOK})


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


StateChangeHook = Callable[[CircuitState, CircuitState], None]


class CircuitBreaker:
    """Async-safe circuit breaker for a single target.

    Args:
        name:                Human-readable target name (for logging/errors).
        failure_threshold:   Consecutive failures before opening the circuit.
        reset_timeout:       Seconds after the last failure before probing.
        half_open_successes: Probe successes needed to close the circuit.
        on_state_change:     ``(previous, new) -> None``, fired once per real
                             transition.  Must not raise; an error it
                             raises surfaces as ``StateChangeHookError``.
        clock:               Monotonic time source in seconds.
    """

    def __init__(
        self,
        name: str = "default",
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        half_open_successes: int = 1,
        on_state_change: StateChangeHook | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ConfigurationError(f"failure_threshold must be >= 1, got {failure_threshold}")
        if half_open_successes < 1:
            raise ConfigurationError(f"half_open_successes must be >= 1, got {half_open_successes}")
        if reset_timeout < 0:
            raise ConfigurationError(f"reset_timeout must be >= 0, got {reset_timeout}")

        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.half_open_successes = half_open_successes
        self.on_state_change = on_state_change
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: float | None = None
        self._lock = asyncio.Lock()

        # Metrics
        self.total_calls = 0
        self.total_failures = 0
        self.total_rejections = 0
        self.total_successes = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        name: str = "default",
        **kwargs: Any,
    ) -> CircuitBreaker:
        """Create a breaker using the ``CIRCUIT_BREAKER_*`` settings."""
        settings = settings or get_settings()
        return cls(
            name=name,
            failure_threshold=settings.CIRCUIT_BREAKER_THRESHOLD,
            reset_timeout=settings.CIRCUIT_BREAKER_RESET_SECONDS,
            half_open_successes=settings.CIRCUIT_BREAKER_HALF_OPEN_SUCCESSES,
            **kwargs,
        )

    # ── Public properties ────────────────────────────────────────────

    @property
    def state(self) -> CircuitState:
        """Return the current state, moving OPEN → HALF_OPEN if due."""
        self._check_half_open()
        return self._state

    @property
    def failure_count(self) -> int:
        """Consecutive failures observed."""
        return self._failure_count

    # ── Core call wrapper ────────────────────────────────────────────

    async def pre_check(self) -> None:
        """Check whether a call is allowed; raise if the circuit is open."""
        async with self._lock:
            self._check_half_open()
            if self._state == CircuitState.OPEN:
                self.total_rejections += 1
                logger.debug("Circuit '%s' rejected a call (%d failures)", self.name, self._failure_count)
                raise CircuitOpenError(self.name, self._failure_count, self._retry_after())
            self.total_calls += 1

    async def on_success(self) -> None:
        """Record a successful call; close the circuit once probing succeeds."""
        async with self._lock:
            self.total_successes += 1
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.half_open_successes:
                    self._transition_to(CircuitState.CLOSED)
            elif self._state == CircuitState.CLOSED:
                self._failure_count = 0

    async def on_failure(self) -> None:
        """Record a failed call; potentially open the circuit."""
        async with self._lock:
            self._failure_count += 1
            self.total_failures += 1
            self._last_failure_time = self._clock()

            if self._state == CircuitState.HALF_OPEN:
                # Probe failed; reopen
                self._transition_to(CircuitState.OPEN)
            elif self._failure_count >= self.failure_threshold:
                self._transition_to(CircuitState.OPEN)

    async def call(self, operation: Callable[[], Any]) -> Any:
        """Run *operation* through the breaker.

        Returns:
            Whatever *operation* returns (awaited if awaitable).

        Raises:
            CircuitOpenError: If the circuit is open; *operation* is not called.
            StateChangeHookError: If ``on_state_change`` raised while recording
                the outcome (the outcome itself is recorded).
            Exception: Any error from *operation*, unchanged.
        """
        await self.pre_check()
        try:
            result = await _invoke(operation)
        except Exception:
            await self.on_failure()
            raise
        await self.on_success()
        return result

    async def call_with_retry(
        self,
        operation: Operation,
        options: RetryOptions | None = None,
        **overrides: Any,
    ) -> RetryResult:
        """Retry *operation*, sending every attempt through the breaker.

        A ``CircuitOpenError`` is never retried: once the circuit opens the
        retry loop stops with that error.  Neither is a
        ``StateChangeHookError``, so an operation that already succeeded is
        not run again because its hook failed.  Other errors defer to the
        caller's ``retry_if`` (retry by default).
        """
        opts = _resolve_options(options, overrides)
        caller_retry_if = opts.retry_if

        def retry_if(error: BaseException, attempt: int) -> bool:
            if error_kind(error) in _NEVER_RETRIED:
                return False
            if caller_retry_if is None:
                return True
            return caller_retry_if(error, attempt)

        async def attempt_through_breaker(attempt: int) -> Any:
            return await self.call(lambda: operation(attempt))

        return await retry(attempt_through_breaker, opts, retry_if=retry_if)

    async def reset(self) -> None:
        """Force-reset the circuit breaker to CLOSED state."""
        async with self._lock:
            self._failure_count = 0
            self._success_count = 0
            self._last_failure_time = None
            logger.info("Circuit '%s' manually reset", self.name)
            self._transition_to(CircuitState.CLOSED)

    def snapshot(self) -> dict:
        """Return a JSON-serializable snapshot for health/metrics."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "half_open_successes": self._success_count,
            "failure_threshold": self.failure_threshold,
            "reset_timeout": self.reset_timeout,
            "total_calls": self.total_calls,
            "total_failures": self.total_failures,
            "total_rejections": self.total_rejections,
            "total_successes": self.total_successes,
        }

    # ── State machine ────────────────────────────────────────────────

    def _check_half_open(self) -> None:
        if self._state != CircuitState.OPEN or self._last_failure_time is None:
            return
        if self._clock() - self._last_failure_time >= self.reset_timeout:
            self._transition_to(CircuitState.HALF_OPEN)

    def _retry_after(self) -> float:
        if self._last_failure_time is None:
            return 0.0
        return self.reset_timeout - (self._clock() - self._last_failure_time)

    def _transition_to(self, new_state: CircuitState) -> None:
        """Move to *new_state*; a no-op if already there."""
        old_state = self._state
        if old_state == new_state:
            return

        self._state = new_state
        self._success_count = 0
        if new_state == CircuitState.CLOSED:
            self._failure_count = 0
            logger.info("Circuit '%s' closed", self.name)
        elif new_state == CircuitState.HALF_OPEN:
            logger.info("Circuit '%s' half-open, probing", self.name)
        else:
            logger.warning(
                "Circuit '%s' open after %d failures (reset in %.1fs)",
                self.name,
                self._failure_count,
                self.reset_timeout,
            )

        if self.on_state_change is None:
            return
        try:
            self.on_state_change(old_state, new_state)
        except Exception as exc:
            logger.error("Circuit '%s' state-change hook raised: %r", self.name, exc)
            raise StateChangeHookError(self.name, old_state, new_state) from exc


class CircuitBreakerRegistry:
    """Manages one ``CircuitBreaker`` per named target.

    Usage::

        registry = CircuitBreakerRegistry(failure_threshold=5, reset_timeout=30.0)
        result = await registry.get("quotes-api").call(fetch_quotes)
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        half_open_successes: int = 1,
        on_state_change: Callable[[str, CircuitState, CircuitState], None] | None = None,
    ) -> None:
        self._threshold = failure_threshold
        self._reset_timeout = reset_timeout
        self._half_open_successes = half_open_successes
        self._on_state_change = on_state_change
        self._breakers: dict[str, CircuitBreaker] = {}

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **kwargs: Any) -> CircuitBreakerRegistry:
        settings = settings or get_settings()
        return cls(
            failure_threshold=settings.CIRCUIT_BREAKER_THRESHOLD,
            reset_timeout=settings.CIRCUIT_BREAKER_RESET_SECONDS,
            half_open_successes=settings.CIRCUIT_BREAKER_HALF_OPEN_SUCCESSES,
            **kwargs,
        )

    def get(self, name: str) -> CircuitBreaker:
        """Return (or create) the circuit breaker for *name*."""
        if name not in self._breakers:
            hook = None
            if self._on_state_change is not None:
                registry_hook = self._on_state_change

                def hook(old: CircuitState, new: CircuitState, _name: str = name) -> None:
                    registry_hook(_name, old, new)

            self._breakers[name] = CircuitBreaker(
                name=name,
                failure_threshold=self._threshold,
                reset_timeout=self._reset_timeout,
                half_open_successes=self._half_open_successes,
                on_state_change=hook,
            )
        return self._breakers[name]

    def __contains__(self, name: str) -> bool:
        return name in self._breakers

    def all_snapshots(self) -> list[dict]:
        """Return snapshots for every registered breaker."""
        return [cb.snapshot() for cb in self._breakers.values()]

    async def reset_all(self) -> None:
        """Reset every circuit breaker to CLOSED."""
        for cb in self._breakers.values():
            await cb.reset()
