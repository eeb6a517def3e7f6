"""Rate limiting for upstream API calls.

Provides a token-bucket rate limiter shared by every worker of a run, so the
total request rate stays bounded no matter how many pages are in flight.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional

from enrollsync.lib.cancellation import CancellationToken

logger = logging.getLogger(__name__)

__all__ = ["RateLimiter"]


class RateLimiter:
    """Token-bucket rate limiter.

    Limits the rate of operations to a specified number per second.
    Thread-safe for concurrent usage.

    Example:
        limiter = RateLimiter(requests_per_second=10)

        for page in pages:
            limiter.acquire(cancel)  # Blocks until allowed
            fetch(page)
    """

    def __init__(
        self,
        requests_per_second: float,
        *,
        burst_size: Optional[int] = None,
    ) -> None:
        """Initialize rate limiter.

        Args:
            requests_per_second: Maximum sustained rate
            burst_size: Maximum burst capacity (defaults to 1)
        """
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        self.rate = requests_per_second
        self.burst_size = burst_size or 1
        self.tokens = float(self.burst_size)
        self.last_update = time.monotonic()
        self._lock = threading.Lock()

    def acquire(self, cancel: Optional[CancellationToken] = None) -> None:
        """Acquire a token, blocking until available.

        Raises:
            Cancelled: If ``cancel`` fires while waiting
        """
        while True:
            with self._lock:
                self._refill_tokens()

                if self.tokens >= 1:
                    self.tokens -= 1
                    return

                wait_time = (1 - self.tokens) / self.rate

            # Cap wait at 100ms increments
            if cancel is not None:
                cancel.sleep(min(wait_time, 0.1))
            else:
                time.sleep(min(wait_time, 0.1))

    def _refill_tokens(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_update
        self.tokens = min(
            self.burst_size,
            self.tokens + elapsed * self.rate,
        )
        self.last_update = now

    def try_acquire(self) -> bool:
        """Try to acquire a token without blocking."""
        with self._lock:
            self._refill_tokens()
            if self.tokens >= 1:
                self.tokens -= 1
                return True
            return False
