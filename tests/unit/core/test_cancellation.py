"""Tests for cooperative cancellation tokens."""

import asyncio
from unittest.mock import MagicMock

import pytest

from corvid_retry.core.cancellation import CancellationSource, CancellationToken, CancelSubscription
from corvid_retry.core.errors import RetryCancelledError
from corvid_retry.resilience.retry import _sleep


class EventToken:
    """Token built without CancellationSource, with its own handle type."""

    class Handle:
        def __init__(self, token, listener):
            self.token = token
            self.listener = listener

        def unsubscribe(self):
            self.token.listeners.discard(self.listener)

    def __init__(self):
        self.listeners = set()
        self.cancelled = False

    def is_cancelled(self):
        return self.cancelled

    def reason(self):
        return "event" if self.cancelled else None

    def on_cancel(self, listener):
        self.listeners.add(listener)
        return self.Handle(self, listener)

    def fire(self):
        self.cancelled = True
        for listener in list(self.listeners):
            listener("event")


class TestCancellationSource:
    def test_initially_not_cancelled(self):
        source = CancellationSource()
        assert source.is_cancelled() is False
        assert source.reason() is None
        source.raise_if_cancelled()

    def test_satisfies_token_protocol(self):
        assert isinstance(CancellationSource(), CancellationToken)

    def test_subscription_satisfies_handle_protocol(self):
        assert isinstance(CancellationSource().on_cancel(MagicMock()), CancelSubscription)

    def test_independent_token_satisfies_protocol(self):
        assert isinstance(EventToken(), CancellationToken)

    def test_cancel_sets_reason(self):
        source = CancellationSource()
        source.cancel("deadline")
        assert source.is_cancelled() is True
        assert source.reason() == "deadline"

    def test_default_reason(self):
        source = CancellationSource()
        source.cancel()
        assert source.reason() == "cancelled"

    def test_second_cancel_is_ignored(self):
        source = CancellationSource()
        source.cancel("first")
        source.cancel("second")
        assert source.reason() == "first"

    def test_raise_if_cancelled(self):
        source = CancellationSource()
        source.cancel("stop")
        with pytest.raises(RetryCancelledError) as exc_info:
            source.raise_if_cancelled()
        assert exc_info.value.reason == "stop"


class TestCancelListeners:
    def test_listener_called_once_with_reason(self):
        source = CancellationSource()
        listener = MagicMock()
        source.on_cancel(listener)
        source.cancel("bye")
        source.cancel("again")
        listener.assert_called_once_with("bye")

    def test_listener_on_cancelled_source_runs_immediately(self):
        source = CancellationSource()
        source.cancel("late")
        listener = MagicMock()
        subscription = source.on_cancel(listener)
        listener.assert_called_once_with("late")
        assert subscription.active is False

    def test_unsubscribe_prevents_notification(self):
        source = CancellationSource()
        listener = MagicMock()
        subscription = source.on_cancel(listener)
        subscription.unsubscribe()
        subscription.unsubscribe()
        source.cancel()
        listener.assert_not_called()
        assert subscription.active is False

    def test_listener_may_unsubscribe_another(self):
        source = CancellationSource()
        second = MagicMock()
        holder = {}

        def first(reason):
            holder["second"].unsubscribe()

        source.on_cancel(first)
        holder["second"] = source.on_cancel(second)
        source.cancel()
        second.assert_not_called()

    def test_raising_listener_does_not_starve_the_rest(self):
        source = CancellationSource()
        second = MagicMock()
        source.on_cancel(MagicMock(side_effect=RuntimeError("listener bug")))
        source.on_cancel(second)

        with pytest.raises(RuntimeError, match="listener bug"):
            source.cancel("stop")
        second.assert_called_once_with("stop")
        assert source.is_cancelled() is True

    def test_first_listener_error_wins(self):
        source = CancellationSource()
        source.on_cancel(MagicMock(side_effect=KeyError("first")))
        source.on_cancel(MagicMock(side_effect=ValueError("second")))
        with pytest.raises(KeyError):
            source.cancel()


class TestIndependentToken:
    async def test_backoff_sleep_aborts_and_unsubscribes(self):
        token = EventToken()
        asyncio.get_running_loop().call_later(0.01, token.fire)
        with pytest.raises(RetryCancelledError, match="event"):
            await asyncio.wait_for(_sleep(10.0, token), timeout=1.0)
        assert token.listeners == set()
