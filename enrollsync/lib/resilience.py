"""Retry with exponential backoff for upstream calls.

The BackoffExecutor knows nothing about HTTP or pagination: it runs a
zero-argument action that classifies its own outcome by raising
TransientError (retry), any other exception (terminal) or returning a value
(success).

Implementation: uses tenacity internally. The sleep between attempts goes
through the run's CancellationToken so a deadline that fires mid-backoff
aborts the wait immediately.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, TypeVar

import httpx
import tenacity

from enrollsync.lib.cancellation import CancellationToken
from enrollsync.lib.errors import TerminalHTTPError, TransientError

logger = logging.getLogger(__name__)

__all__ = [
    "BackoffExecutor",
    "RETRYABLE_STATUS_CODES",
    "is_retryable",
    "raise_for_status",
]

T = TypeVar("T")

RETRYABLE_STATUS_CODES = {429}

_BODY_LIMIT = 500


def is_retryable(exc: BaseException) -> bool:
    """Only TransientError is worth another attempt."""
    return isinstance(exc, TransientError)


def _parse_retry_after(response: httpx.Response) -> Optional[float]:
    retry_after = response.headers.get("Retry-After")
    if not retry_after:
        return None
    try:
        seconds = float(retry_after)
    except (TypeError, ValueError):
        return None
    return seconds if seconds > 0 else None


def raise_for_status(
    response: httpx.Response,
    *,
    description: str = "request",
    extra_retryable: Optional[Callable[[httpx.Response], bool]] = None,
) -> httpx.Response:
    """Classify an HTTP response.

    2xx is returned unchanged. 429 and 5xx raise TransientError. 401 and any
    other 4xx raise TerminalHTTPError carrying the response body.

    Args:
        response: Response to classify
        description: Operation name used in error messages
        extra_retryable: Optional predicate marking additional responses as
            retryable (e.g. quota errors reported as 403)

    Returns:
        The response, if successful
    """
    status = response.status_code
    if 200 <= status < 300:
        return response

    body = response.text.strip()[:_BODY_LIMIT]
    message = f"{description} failed with HTTP {status}: {body}"

    if status in RETRYABLE_STATUS_CODES or status >= 500:
        raise TransientError(
            message,
            status_code=status,
            body=body,
            retry_after=_parse_retry_after(response),
        )
    if extra_retryable is not None and extra_retryable(response):
        raise TransientError(message, status_code=status, body=body)
    raise TerminalHTTPError(message, status_code=status, body=body)


class BackoffExecutor:
    """Run an action with bounded retry and exponential delay.

    The action runs up to ``max_retries + 1`` times. After the attempt with
    zero-based index ``i`` fails with a TransientError the executor sleeps
    ``retry_delay * 2**i`` seconds. A server Retry-After hint is reported in
    the retry log but never changes the schedule.

    Example:
        executor = BackoffExecutor(max_retries=3, retry_delay=2.0)
        response = executor.execute(
            lambda: raise_for_status(client.get("/items")),
            cancel,
            description="GET /items",
        )
    """

    def __init__(self, max_retries: int = 3, retry_delay: float = 2.0) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if retry_delay < 0:
            raise ValueError("retry_delay must be >= 0")
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, attempt_index: int) -> float:
        """Backoff delay after the zero-based attempt ``attempt_index``."""
        return self.retry_delay * (2**attempt_index)

    def _wait(self, retry_state: tenacity.RetryCallState) -> float:
        return self.delay_for(retry_state.attempt_number - 1)

    def execute(
        self,
        action: Callable[[], T],
        cancel: CancellationToken,
        *,
        description: str = "operation",
    ) -> T:
        """Execute ``action`` under the retry policy.

        Raises:
            Cancelled: If the token is set before an attempt or during a sleep
            TransientError: If every attempt failed transiently
            Exception: Whatever terminal error the action raised
        """
        max_attempts = self.max_attempts

        def attempt() -> T:
            cancel.raise_if_cancelled(description)
            return action()

        def before_sleep_handler(retry_state: tenacity.RetryCallState) -> None:
            exception = retry_state.outcome.exception() if retry_state.outcome else None
            retry_after = getattr(exception, "retry_after", None)
            logger.warning(
                "%s attempt %d/%d failed: %s. Retrying in %.1fs%s...",
                description,
                retry_state.attempt_number,
                max_attempts,
                exception,
                retry_state.next_action.sleep if retry_state.next_action else 0,
                f" (server asked for {retry_after:.0f}s)" if retry_after else "",
            )

        retryer = tenacity.Retrying(
            stop=tenacity.stop_after_attempt(max_attempts),
            wait=self._wait,
            retry=tenacity.retry_if_exception(is_retryable),
            sleep=cancel.sleep,
            before_sleep=before_sleep_handler,
            reraise=True,
        )

        try:
            return retryer(attempt)
        except TransientError as exc:
            logger.error(
                "%s failed after %d attempts: %s",
                description,
                max_attempts,
                exc,
            )
            raise
