"""Access tokens for the Google Sheets writer.

Sources are tried in this order:

1. ``sheets_access_token``: a ready OAuth access token, sent as is
2. ``credentials_json_base64``: base64-encoded service-account JSON
3. ``credentials_file_path``: service-account JSON file. A path that does not
   exist falls through to the next source.
4. Application Default Credentials

Credential-backed providers refresh the token through google-auth whenever
it is missing or expired, so long unattended runs keep working.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Optional

import google.auth
import google.auth.exceptions
import google.auth.transport.requests
from google.oauth2 import service_account

from enrollsync.lib.errors import AuthError, ConfigurationError

logger = logging.getLogger(__name__)

__all__ = [
    "CredentialsTokenProvider",
    "SHEETS_SCOPES",
    "TokenProvider",
    "resolve_token_provider",
]

SHEETS_SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]

TokenProvider = Callable[[], str]


class CredentialsTokenProvider:
    """Callable returning a valid access token from google-auth credentials.

    Refreshes happen under a lock, so concurrent writers trigger one refresh.

    Raises:
        AuthError: If the refresh fails
    """

    def __init__(
        self,
        credentials: Any,
        *,
        request_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        self.credentials = credentials
        self._request_factory = request_factory or google.auth.transport.requests.Request
        self._lock = threading.Lock()

    def __call__(self) -> str:
        with self._lock:
            if not self.credentials.valid:
                logger.debug("Refreshing Google access token")
                try:
                    self.credentials.refresh(self._request_factory())
                except google.auth.exceptions.GoogleAuthError as exc:
                    raise AuthError(f"Google credentials refresh failed: {exc}", cause=exc) from exc
            return self.credentials.token


def _from_base64(encoded: str) -> Any:
    try:
        info = json.loads(base64.b64decode(encoded, validate=True))
    except (binascii.Error, ValueError) as exc:
        raise ConfigurationError(f"credentials_json_base64 is not base64-encoded JSON: {exc}") from exc
    try:
        return service_account.Credentials.from_service_account_info(info, scopes=SHEETS_SCOPES)
    except (ValueError, KeyError) as exc:
        raise ConfigurationError(f"credentials_json_base64 is not a service-account key: {exc}") from exc


def _from_file(path: Path) -> Any:
    try:
        return service_account.Credentials.from_service_account_file(str(path), scopes=SHEETS_SCOPES)
    except (OSError, ValueError, KeyError) as exc:
        raise ConfigurationError(f"Cannot load credentials file '{path}': {exc}") from exc


def _from_default() -> Any:
    try:
        credentials, _ = google.auth.default(scopes=SHEETS_SCOPES)
    except google.auth.exceptions.DefaultCredentialsError as exc:
        raise ConfigurationError(
            "No Google credentials found",
            issues=[
                "set sheets_access_token, credentials_json_base64 or credentials_file_path, "
                "or configure Application Default Credentials",
            ],
        ) from exc
    return credentials


def resolve_token_provider(
    *,
    access_token: str = "",
    credentials_json_base64: str = "",
    credentials_file_path: str = "",
    request_factory: Optional[Callable[[], Any]] = None,
) -> TokenProvider:
    """Pick the first configured token source.

    Raises:
        ConfigurationError: If the chosen source is unusable or none is found
    """
    if access_token:
        logger.info("Google Sheets: using static access token")
        return lambda: access_token

    if credentials_json_base64:
        logger.info("Google Sheets: using base64 service-account credentials")
        credentials = _from_base64(credentials_json_base64)
    elif credentials_file_path and Path(credentials_file_path).exists():
        logger.info("Google Sheets: using credentials file %s", credentials_file_path)
        credentials = _from_file(Path(credentials_file_path))
    else:
        if credentials_file_path:
            logger.warning(
                "Credentials file '%s' not found, trying Application Default Credentials",
                credentials_file_path,
            )
        logger.info("Google Sheets: using Application Default Credentials")
        credentials = _from_default()

    return CredentialsTokenProvider(credentials, request_factory=request_factory)
