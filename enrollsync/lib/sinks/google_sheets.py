"""Google Sheets writer over the Sheets v4 REST API.

Every call goes through ApiClient, so sink writes get the same retry and
cancellation behaviour as upstream reads. Sheets throttling arrives either
as 429 or as 403 with a ``rateLimitExceeded`` reason; both are retried.

The writer takes an OAuth access token, or a callable returning one, and
sends it as a bearer token. See credentials.py for refreshing providers.
A tab deleted behind the writer's back is forgotten once Sheets answers
400 "Unable to parse range", so the next ensure recreates it.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Set, Union
from urllib.parse import quote

import httpx

from enrollsync.lib.cancellation import CancellationToken
from enrollsync.lib.client import ApiClient
from enrollsync.lib.errors import Cancelled, SinkError, SyncError, TerminalHTTPError
from enrollsync.lib.resilience import BackoffExecutor
from enrollsync.lib.sinks.base import SheetWriter
from enrollsync.lib.sinks.credentials import TokenProvider

logger = logging.getLogger(__name__)

__all__ = ["GoogleSheetsWriter", "SHEETS_BASE_URL", "is_sheets_rate_limited"]

SHEETS_BASE_URL = "https://sheets.googleapis.com/v4/spreadsheets"


def is_sheets_rate_limited(response: httpx.Response) -> bool:
    """True for the 403 responses Sheets uses to signal quota exhaustion."""
    return response.status_code == 403 and "ratelimitexceeded" in response.text.lower()


def _a1_range(name: str, cell: str = "") -> str:
    quoted = "'" + name.replace("'", "''") + "'"
    return f"{quoted}!{cell}" if cell else quoted


def _is_missing_range(exc: SyncError) -> bool:
    return (
        isinstance(exc, TerminalHTTPError)
        and exc.status_code == 400
        and "unable to parse range" in (exc.body or "").lower()
    )


class GoogleSheetsWriter(SheetWriter):
    """Write tabs of one spreadsheet.

    Example:
        writer = GoogleSheetsWriter("1AbC...", access_token="ya29...")
        writer.overwrite_all("Matrículas EAD", headers, rows, cancel=cancel)
    """

    def __init__(
        self,
        spreadsheet_id: str,
        access_token: Union[str, TokenProvider],
        *,
        executor: Optional[BackoffExecutor] = None,
        base_url: str = SHEETS_BASE_URL,
        timeout: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        if not spreadsheet_id:
            raise ValueError("spreadsheet_id is required")
        self.spreadsheet_id = spreadsheet_id
        self._token_provider: TokenProvider = (
            access_token if callable(access_token) else (lambda: access_token)
        )
        self._api = ApiClient(
            base_url,
            executor=executor or BackoffExecutor(),
            timeout=timeout,
            max_connections=2,
            extra_retryable=is_sheets_rate_limited,
            transport=transport,
        )
        self._known_tabs: Set[str] = set()

    @property
    def kind(self) -> str:
        return "google_sheets"

    def close(self) -> None:
        self._api.close()

    def __enter__(self) -> "GoogleSheetsWriter":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _values_path(self, a1: str, suffix: str = "") -> str:
        return f"/{self.spreadsheet_id}/values/{quote(a1, safe='')}{suffix}"

    def _call(
        self,
        op: str,
        name: str,
        method: str,
        path: str,
        cancel: Optional[CancellationToken],
        *,
        params: Optional[Dict[str, str]] = None,
        json: Any = None,
    ) -> httpx.Response:
        token = cancel if cancel is not None else CancellationToken()
        try:
            headers = {"Authorization": f"Bearer {self._token_provider()}"}
            return self._api.request(method, path, token, headers=headers, params=params, json=json)
        except Cancelled:
            raise
        except SyncError as exc:
            if _is_missing_range(exc):
                self._known_tabs.discard(name)
            raise SinkError(f"Sheets {op} failed for '{name}': {exc.message}", target=name, cause=exc) from exc

    # ------------------------------------------------------------------
    # SheetWriter
    # ------------------------------------------------------------------

    def _existing_tabs(self, cancel: Optional[CancellationToken]) -> List[str]:
        response = self._call(
            "lookup",
            self.spreadsheet_id,
            "GET",
            f"/{self.spreadsheet_id}",
            cancel,
            params={"fields": "sheets.properties.title"},
        )
        try:
            sheets = response.json().get("sheets") or []
        except ValueError as exc:
            raise SinkError("Sheets returned an unreadable spreadsheet description", cause=exc) from exc
        return [s.get("properties", {}).get("title", "") for s in sheets]

    def ensure_target_exists(self, name: str, *, cancel: Optional[CancellationToken] = None) -> None:
        if name in self._known_tabs:
            return
        if name not in self._existing_tabs(cancel):
            logger.info("Creating tab '%s' in spreadsheet %s", name, self.spreadsheet_id)
            self._call(
                "addSheet",
                name,
                "POST",
                f"/{self.spreadsheet_id}:batchUpdate",
                cancel,
                json={"requests": [{"addSheet": {"properties": {"title": name}}}]},
            )
        self._known_tabs.add(name)

    def clear(self, name: str, *, cancel: Optional[CancellationToken] = None) -> None:
        self._call("clear", name, "POST", self._values_path(_a1_range(name), ":clear"), cancel, json={})
        logger.debug("Cleared tab '%s'", name)

    def _put_values(
        self,
        op: str,
        name: str,
        values: List[List[Any]],
        cancel: Optional[CancellationToken],
    ) -> None:
        a1 = _a1_range(name, "A1")
        self._call(
            op,
            name,
            "PUT",
            self._values_path(a1),
            cancel,
            params={"valueInputOption": "USER_ENTERED"},
            json={"range": a1, "majorDimension": "ROWS", "values": values},
        )

    def set_headers(
        self,
        name: str,
        headers: Sequence[str],
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        self._put_values("set_headers", name, [list(headers)], cancel)

    def append_rows(
        self,
        name: str,
        rows: Sequence[Sequence[Any]],
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        if not rows:
            return
        a1 = _a1_range(name)
        self._call(
            "append",
            name,
            "POST",
            self._values_path(a1, ":append"),
            cancel,
            params={"valueInputOption": "USER_ENTERED", "insertDataOption": "INSERT_ROWS"},
            json={"range": a1, "majorDimension": "ROWS", "values": [list(r) for r in rows]},
        )
        logger.debug("Appended %d rows to '%s'", len(rows), name)

    def overwrite_all(
        self,
        name: str,
        headers: Sequence[str],
        rows: Sequence[Sequence[Any]],
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        self.ensure_target_exists(name, cancel=cancel)
        self.clear(name, cancel=cancel)
        values = self._all_values(headers, rows)
        if values:
            self._put_values("write", name, values, cancel)
        logger.info("Tab '%s' overwritten with %d data rows", name, len(rows))
