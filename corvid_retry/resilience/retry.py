"""Retry executor with exponential backoff and full jitter.

``retry()`` invokes an operation with the 1-based attempt number until it
succeeds, the retry predicate rejects its error, cancellation is requested,
or the attempt budget runs out:

    attempt fails → cancelled?       → re-raise the original error
                  → retry_if false?  → re-raise the original error
                  → last attempt?    → RetryExhaustedError
                  → on_retry(error, attempt, delay), sleep, next attempt

Only library errors are created here; operation errors are never wrapped
except by ``RetryExhaustedError``.
"""

from __future__ import annotations

import asyncio
import dataclasses
import functools
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from corvid_retry.core.cancellation import CancellationToken
from corvid_retry.core.config import Settings, get_settings
from corvid_retry.core.errors import (
    ConfigurationError,
    RetryCancelledError,
    RetryExhaustedError,
)
from corvid_retry.resilience.backoff import compute_delay

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryPredicate = Callable[[BaseException, int], bool]
RetryHook = Callable[[BaseException, int, float], None]
Operation = Callable[[int], Any]


# ── Data classes ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RetryOptions:
    """Per-call retry configuration.

    Attributes:
        max_attempts: Total attempts including the first (>= 1).
        base_delay:   Seconds to wait before the first retry.
        max_delay:    Cap on any single delay, in seconds.
        factor:       Backoff multiplier (``1`` gives linear backoff).
        jitter:       Draw each delay uniformly from ``[0, delay)``.
        retry_if:     ``(error, attempt) -> bool``; ``False`` stops retrying
                      and re-raises the error unchanged.
        on_retry:     ``(error, attempt, delay) -> None``; called once per
                      retried failure, before sleeping.  Must not raise.
        cancellation: Token polled before each attempt and during sleeps.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    factor: float = 2.0
    jitter: bool = True
    retry_if: RetryPredicate | None = None
    on_retry: RetryHook | None = None
    cancellation: CancellationToken | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **overrides: Any) -> RetryOptions:
        """Build options from ``Settings`` (environment-driven defaults)."""
        settings = settings or get_settings()
        values: dict[str, Any] = {
            "max_attempts": settings.RETRY_MAX_ATTEMPTS,
            "base_delay": settings.RETRY_BASE_DELAY,
            "max_delay": settings.RETRY_MAX_DELAY,
            "factor": settings.RETRY_FACTOR,
            "jitter": settings.RETRY_JITTER,
        }
        values.update(overrides)
        return cls(**values)

    def validate(self) -> None:
        """Raise ``ConfigurationError`` if any field is out of range."""
        if self.max_attempts < 1:
            raise ConfigurationError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0:
            raise ConfigurationError(f"base_delay must be >= 0, got {self.base_delay}")
        if self.max_delay < 0:
            raise ConfigurationError(f"max_delay must be >= 0, got {self.max_delay}")
        if self.factor < 0:
            raise ConfigurationError(f"factor must be >= 0, got {self.factor}")


@dataclass(frozen=True)
class RetryResult(Generic[T]):
    """Successful outcome of a retried call.

    Attributes:
        value:    What the operation returned.
        attempts: Attempts consumed, including the successful one.
    """

    value: T
    attempts: int


# ── Helpers ─────────────────────────────────────────────────────────────


def _resolve_options(options: RetryOptions | None, overrides: dict[str, Any]) -> RetryOptions:
    options = options or RetryOptions()
    if overrides:
        options = dataclasses.replace(options, **overrides)
    return options


async def _invoke(operation: Callable[..., Any], *args: Any) -> Any:
    """Call *operation*, awaiting the result if it is awaitable."""
    result = operation(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


async def _sleep(delay: float, cancellation: CancellationToken | None) -> None:
    """Sleep for *delay* seconds, aborting promptly on cancellation.

    Raises:
        RetryCancelledError: If the token is or becomes cancelled.
    """
    if cancellation is None:
        await asyncio.sleep(delay)
        return
    if cancellation.is_cancelled():
        raise RetryCancelledError(cancellation.reason())

    loop = asyncio.get_running_loop()
    waiter: asyncio.Future[None] = loop.create_future()

    def _wake() -> None:
        if not waiter.done():
            waiter.set_result(None)

    def _abort(reason: Any) -> None:
        if not waiter.done():
            waiter.set_exception(RetryCancelledError(reason))

    subscription = cancellation.on_cancel(_abort)
    timer = loop.call_later(delay, _wake)
    try:
        await waiter
    finally:
        timer.cancel()
        subscription.unsubscribe()


# ── Core retry ──────────────────────────────────────────────────────────


async def retry(
    operation: Operation,
    options: RetryOptions | None = None,
    **overrides: Any,
) -> RetryResult:
    """Call *operation* until it succeeds, backing off between failures.

    Usage::

        result = await retry(fetch_quote, max_attempts=5, base_delay=0.5)
        quote = result.value

    Args:
        operation: ``(attempt) -> value | awaitable``; attempt is 1-based.
        options:   Base ``RetryOptions`` (defaults if omitted).
        **overrides: Field overrides applied on top of *options*.

    Returns:
        A ``RetryResult`` with the value and the attempts consumed.

    Raises:
        ConfigurationError: If the options are invalid (before any attempt).
        RetryCancelledError: If cancellation is active before an attempt or
            fires during a backoff sleep.
        RetryExhaustedError: If every attempt failed.
        Exception: The operation's own error, unchanged, when ``retry_if``
            rejects it or cancellation was requested while it ran.
    """
    opts = _resolve_options(options, overrides)
    opts.validate()
    token = opts.cancellation
    label = getattr(operation, "__qualname__", repr(operation))
    last_error: Exception | None = None

    for attempt in range(1, opts.max_attempts + 1):
        if token is not None and token.is_cancelled():
            raise RetryCancelledError(token.reason())

        try:
            value = await _invoke(operation, attempt)
        except Exception as exc:
            last_error = exc
            if token is not None and token.is_cancelled():
                raise
            if opts.retry_if is not None and not opts.retry_if(exc, attempt):
                logger.debug("Not retrying %s after attempt %d: %r", label, attempt, exc)
                raise
        else:
            if attempt > 1:
                logger.info("%s succeeded on attempt %d/%d", label, attempt, opts.max_attempts)
            return RetryResult(value=value, attempts=attempt)

        if attempt == opts.max_attempts:
            break

        delay = compute_delay(attempt, opts.base_delay, opts.max_delay, opts.factor, opts.jitter)
        logger.warning(
            "%s failed (attempt %d/%d): %r, retrying in %.3fs",
            label,
            attempt,
            opts.max_attempts,
            last_error,
            delay,
        )
        if opts.on_retry is not None:
            opts.on_retry(last_error, attempt, delay)
        await _sleep(delay, token)

    logger.warning("%s failed after %d attempts", label, opts.max_attempts)
    raise RetryExhaustedError(opts.max_attempts, last_error) from last_error


# ── Convenience helpers ─────────────────────────────────────────────────


async def retry_immediate(operation: Operation, max_attempts: int = 3) -> Any:
    """Retry without any delay and return the bare value.

    Good for idempotent operations with transient failures.
    """
    result = await retry(operation, max_attempts=max_attempts, base_delay=0.0, jitter=False)
    return result.value


async def retry_linear(
    operation: Operation,
    options: RetryOptions | None = None,
    **overrides: Any,
) -> RetryResult:
    """Retry with a constant (capped) delay between attempts."""
    overrides["factor"] = 1.0
    return await retry(operation, options, **overrides)


def with_retry(
    func: Callable[..., Any] | None = None,
    options: RetryOptions | None = None,
    **overrides: Any,
) -> Any:
    """Wrap *func* so that every call is retried.

    The wrapper takes the same arguments as *func* and returns a
    ``RetryResult``.  Works directly or as a decorator::

        fetch = with_retry(client.fetch, max_attempts=5)

        @with_retry(base_delay=0.2)
        async def load(path): ...
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., Awaitable[RetryResult]]:
        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> RetryResult:
            return await retry(lambda _attempt: fn(*args, **kwargs), options, **overrides)

        return wrapper

    if func is None:
        return decorator
    return decorator(func)
