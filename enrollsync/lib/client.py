"""HTTP access to the upstream academic API.

ApiClient owns one pooled httpx.Client and routes every request through the
BackoffExecutor, so authentication and data requests share the same retry
and cancellation semantics. Transport errors become TransientError; status
codes are classified by ``raise_for_status``.

Example:
    with ApiClient("https://api.example.com", executor=BackoffExecutor()) as api:
        response = api.request("GET", "/academico/matriculas", cancel, params={...})
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Mapping, Optional

import httpx
import requests_toolbelt
import tenacity
from requests_toolbelt.utils.user_agent import user_agent

from enrollsync import __version__
from enrollsync.lib.cancellation import CancellationToken
from enrollsync.lib.errors import TransientError
from enrollsync.lib.rate_limiter import RateLimiter
from enrollsync.lib.resilience import BackoffExecutor, raise_for_status

logger = logging.getLogger(__name__)

__all__ = ["ApiClient", "USER_AGENT"]

USER_AGENT = user_agent(
    "enrollment-sync",
    __version__,
    extras=[
        ("httpx", getattr(httpx, "__version__", "unknown")),
        ("tenacity", getattr(tenacity, "__version__", "unknown")),
        ("requests-toolbelt", getattr(requests_toolbelt, "__version__", "unknown")),
    ],
)


class ApiClient:
    """Retrying, cancellable HTTP client bound to one base URL."""

    def __init__(
        self,
        base_url: str,
        *,
        executor: BackoffExecutor,
        timeout: float = 60.0,
        max_connections: int = 10,
        rate_limiter: Optional[RateLimiter] = None,
        extra_retryable: Optional[Callable[[httpx.Response], bool]] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: API base URL (e.g. "https://api.example.com")
            executor: Retry policy shared by every request
            timeout: Per-request timeout in seconds
            max_connections: Connection pool size; sized to the concurrency budget
            rate_limiter: Optional limiter acquired before every attempt
            extra_retryable: Optional predicate marking additional error
                responses as retryable
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.executor = executor
        self.rate_limiter = rate_limiter
        self.extra_retryable = extra_retryable
        limits = httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_connections,
        )
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            limits=limits,
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            transport=transport,
        )

    def __enter__(self) -> "ApiClient":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def request(
        self,
        method: str,
        path: str,
        cancel: CancellationToken,
        *,
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
    ) -> httpx.Response:
        """Send one request, retrying transient failures.

        Returns:
            The successful (2xx) response

        Raises:
            Cancelled: If the run is cancelled before or between attempts
            TransientError: If every attempt failed transiently
            TerminalHTTPError: On 401 and other non-retryable 4xx
        """
        description = f"{method} {path}"
        request_headers: Dict[str, str] = dict(headers or {})

        def send() -> httpx.Response:
            if self.rate_limiter is not None:
                self.rate_limiter.acquire(cancel)
            logger.debug("Request %s with params %s", description, params)
            try:
                response = self._client.request(
                    method,
                    path,
                    headers=request_headers,
                    params=dict(params) if params else None,
                    json=json,
                )
            except httpx.RequestError as exc:
                raise TransientError(f"{description} transport error: {exc}") from exc
            return raise_for_status(
                response,
                description=description,
                extra_retryable=self.extra_retryable,
            )

        return self.executor.execute(send, cancel, description=description)
