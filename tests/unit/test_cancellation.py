"""Tests for CancellationToken."""

import threading
import time

import pytest

from enrollsync.lib.cancellation import CancellationToken
from enrollsync.lib.errors import Cancelled, SyncError
from tests.conftest import FakeClock


class TestCancel:
    """Tests for explicit cancellation."""

    def test_new_token_is_not_cancelled(self):
        token = CancellationToken()
        assert not token.is_cancelled()
        assert token.reason is None
        assert token.remaining() is None

    def test_cancel_is_idempotent_and_keeps_first_reason(self):
        token = CancellationToken()
        token.cancel("first")
        token.cancel("second")

        assert token.is_cancelled()
        assert token.reason == "first"

    def test_raise_if_cancelled(self):
        token = CancellationToken()
        token.raise_if_cancelled("noop")

        token.cancel("stop")
        with pytest.raises(Cancelled, match="fetch cancelled: stop"):
            token.raise_if_cancelled("fetch")

    def test_cancelled_is_a_sync_error(self):
        assert issubclass(Cancelled, SyncError)


class TestDeadline:
    """Tests for deadline-driven cancellation."""

    def test_deadline_trips_token(self):
        clock = FakeClock()
        token = CancellationToken.with_timeout(10, clock=clock)

        assert token.remaining() == 10
        assert not token.is_cancelled()

        clock.advance(10)
        assert token.remaining() == 0
        assert token.is_cancelled()
        assert token.reason == "deadline exceeded"

    def test_with_timeout_none_has_no_deadline(self):
        token = CancellationToken.with_timeout(None)
        assert token.remaining() is None


class TestSleep:
    """Tests for cancellable sleep."""

    def test_sleep_completes_without_signal(self):
        token = CancellationToken()
        start = time.monotonic()
        token.sleep(0.01)
        assert time.monotonic() - start >= 0.005

    def test_sleep_raises_when_already_cancelled(self):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(Cancelled):
            token.sleep(5)

    def test_sleep_is_interrupted_by_cancel(self):
        token = CancellationToken()
        timer = threading.Timer(0.05, token.cancel, args=("abort",))
        timer.start()
        start = time.monotonic()
        try:
            with pytest.raises(Cancelled):
                token.sleep(10)
        finally:
            timer.cancel()
        assert time.monotonic() - start < 5

    def test_sleep_is_capped_by_deadline(self):
        token = CancellationToken.with_timeout(0.05)
        start = time.monotonic()
        with pytest.raises(Cancelled):
            for _ in range(100):
                token.sleep(10)
        assert time.monotonic() - start < 5
