"""Cooperative cancellation for sync runs.

A CancellationToken is the single shared "stop" indicator of one run. It is
tripped either explicitly via cancel() or implicitly once its deadline passes.
Every suspension point (attempt start, backoff sleep, work claim, result
hand-off) checks it.

Example:
    cancel = CancellationToken.with_timeout(600)
    result = driver.retrieve_all(cancel, "/academico/matriculas", ...)
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from enrollsync.lib.errors import Cancelled

logger = logging.getLogger(__name__)

__all__ = ["CancellationToken"]


class CancellationToken:
    """Thread-safe, idempotent stop signal with an optional deadline."""

    def __init__(
        self,
        deadline: Optional[float] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the token.

        Args:
            deadline: Absolute instant (on ``clock``) after which the token
                counts as cancelled. None means no deadline.
            clock: Monotonic time source
        """
        self._event = threading.Event()
        self._deadline = deadline
        self._clock = clock
        self._reason: Optional[str] = None
        self._lock = threading.Lock()

    @classmethod
    def with_timeout(
        cls,
        seconds: Optional[float],
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> "CancellationToken":
        """Create a token that cancels itself ``seconds`` from now."""
        if seconds is None:
            return cls(clock=clock)
        return cls(deadline=clock() + seconds, clock=clock)

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled by caller") -> None:
        """Trip the signal. Calling it again keeps the first reason."""
        with self._lock:
            if self._reason is None:
                self._reason = reason
                logger.info("Cancellation requested: %s", reason)
        self._event.set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None without a deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def is_cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and self._clock() >= self._deadline:
            self.cancel("deadline exceeded")
            return True
        return False

    def raise_if_cancelled(self, context: str = "operation") -> None:
        """Raise Cancelled if the signal is set."""
        if self.is_cancelled():
            raise Cancelled(f"{context} cancelled: {self._reason}")

    def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless the signal fires first.

        Raises:
            Cancelled: If the token is or becomes cancelled during the wait
        """
        self.raise_if_cancelled("sleep")
        timeout = seconds
        remaining = self.remaining()
        if remaining is not None and remaining < timeout:
            timeout = remaining
        if self._event.wait(timeout) or self.is_cancelled():
            raise Cancelled(f"cancelled during {seconds:.2f}s wait: {self._reason}")
