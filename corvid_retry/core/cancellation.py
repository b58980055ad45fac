"""Cooperative cancellation tokens.

A ``CancellationToken`` is owned by the requester and polled by the retry
executor at the top of every attempt, after a failure, and around the
backoff sleep.  It never interrupts work already in flight.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from corvid_retry.core.errors import RetryCancelledError

logger = logging.getLogger(__name__)

CancelListener = Callable[[Any], None]


@runtime_checkable
class CancelSubscription(Protocol):
    """Handle returned by ``CancellationToken.on_cancel``."""

    def unsubscribe(self) -> None: ...


class Subscription:
    """``CancellationSource`` subscription; ``unsubscribe()`` is idempotent."""

    def __init__(self, source: CancellationSource, listener: CancelListener) -> None:
        self._source = source
        self._listener = listener
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if self._active:
            self._active = False
            self._source._remove(self)


@runtime_checkable
class CancellationToken(Protocol):
    """Read side of a cancellation signal."""

    def is_cancelled(self) -> bool: ...

    def reason(self) -> Any: ...

    def on_cancel(self, listener: CancelListener) -> CancelSubscription: ...


class CancellationSource:
    """Concrete, externally controlled ``CancellationToken``.

    Usage::

        source = CancellationSource()
        task = asyncio.create_task(retry(fetch, cancellation=source))
        ...
        source.cancel("shutting down")
    """

    DEFAULT_REASON = "cancelled"

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: Any = None
        self._subscriptions: list[Subscription] = []

    def is_cancelled(self) -> bool:
        return self._cancelled

    def reason(self) -> Any:
        return self._reason

    def on_cancel(self, listener: CancelListener) -> Subscription:
        """Register a one-shot *listener*, called with the cancel reason.

        If the source is already cancelled the listener runs immediately.
        """
        subscription = Subscription(self, listener)
        if self._cancelled:
            subscription._active = False
            listener(self._reason)
            return subscription
        self._subscriptions.append(subscription)
        return subscription

    def cancel(self, reason: Any = None) -> None:
        """Cancel the source; only the first call has any effect.

        Every active listener is notified even if an earlier one raises.
        The first listener error is re-raised once all have run; any later
        ones are logged.
        """
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = self.DEFAULT_REASON if reason is None else reason
        logger.debug("Cancellation requested: %s", self._reason)

        first_error: Exception | None = None
        pending, self._subscriptions = self._subscriptions, []
        for subscription in pending:
            if not subscription._active:
                continue
            subscription._active = False
            try:
                subscription._listener(self._reason)
            except Exception as exc:
                if first_error is None:
                    first_error = exc
                else:
                    logger.error("Cancel listener raised: %r", exc)
        if first_error is not None:
            raise first_error

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise RetryCancelledError(self._reason)

    def _remove(self, subscription: Subscription) -> None:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            pass
