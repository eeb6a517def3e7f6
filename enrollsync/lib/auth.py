"""Bearer token cache for the upstream API.

The API issues short-lived bearer tokens in exchange for a static user
credential sent in the ``token`` header. TokenCache keeps one token for the
whole process and refreshes it only when absent or expired.

The refresh happens while holding the cache lock, so however many workers ask
for a token at once, at most one authentication exchange is in flight; the
others block and then read the freshly cached token.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from pydantic import ValidationError

from enrollsync.lib.cancellation import CancellationToken
from enrollsync.lib.client import ApiClient
from enrollsync.lib.errors import AuthError, Cancelled, SyncError
from enrollsync.lib.models import AuthResponse

logger = logging.getLogger(__name__)

__all__ = ["Token", "TokenCache", "CREDENTIAL_HEADER"]

CREDENTIAL_HEADER = "token"


@dataclass(frozen=True)
class Token:
    """Bearer credential with an absolute expiry instant."""

    value: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return bool(self.value) and now < self.expires_at

    def __repr__(self) -> str:
        return f"Token(value='***', expires_at={self.expires_at!r})"


class TokenCache:
    """Produces a valid bearer token, re-authenticating only when needed.

    Example:
        cache = TokenCache(api, auth_endpoint="/auth/token",
                           credential=settings.user_token, validity_seconds=900)
        token = cache.get_token(cancel)
        headers = {"Authorization": f"Bearer {token.value}"}
    """

    def __init__(
        self,
        client: ApiClient,
        *,
        auth_endpoint: str,
        credential: str,
        validity_seconds: float = 900.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._auth_endpoint = auth_endpoint
        self._credential = credential
        self._validity = validity_seconds
        self._clock = clock
        self._token: Optional[Token] = None
        self._lock = threading.Lock()
        self.exchange_count = 0

    def get_token(self, cancel: CancellationToken) -> Token:
        """Return the cached token or perform one authentication exchange.

        Raises:
            AuthError: If the exchange fails or returns no usable token
            Cancelled: If the run is cancelled during the exchange
        """
        # Waiters block on the lock without watching ``cancel``; the holder's
        # exchange is bounded by the request timeout and retry budget. A
        # read/write split would reintroduce concurrent exchanges.
        with self._lock:
            if self._token is not None and self._token.is_valid(self._clock()):
                return self._token

            logger.info("Token expired or not available. Authenticating...")
            self._token = self._authenticate(cancel)
            logger.info("New token obtained successfully")
            return self._token

    def invalidate(self) -> None:
        """Drop the cached token so the next call re-authenticates."""
        with self._lock:
            self._token = None

    def _authenticate(self, cancel: CancellationToken) -> Token:
        self.exchange_count += 1
        try:
            response = self._client.request(
                "POST",
                self._auth_endpoint,
                cancel,
                headers={CREDENTIAL_HEADER: self._credential},
            )
        except Cancelled:
            raise
        except SyncError as exc:
            raise AuthError("failed to get new auth token", cause=exc) from exc

        try:
            payload = AuthResponse.model_validate_json(response.content)
        except ValidationError as exc:
            raise AuthError("failed to parse auth token response", cause=exc) from exc

        if not payload.token:
            raise AuthError("auth token response was empty")

        return Token(value=payload.token, expires_at=self._clock() + self._validity)
