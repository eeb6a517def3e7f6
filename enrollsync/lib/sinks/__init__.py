"""Sheet writers: where a sync run puts its rows."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

import httpx

from enrollsync.lib.resilience import BackoffExecutor
from enrollsync.lib.sinks.base import SheetWriter
from enrollsync.lib.sinks.credentials import CredentialsTokenProvider, resolve_token_provider
from enrollsync.lib.sinks.google_sheets import GoogleSheetsWriter
from enrollsync.lib.sinks.memory import MemorySheetWriter

if TYPE_CHECKING:
    from enrollsync.lib.settings import SyncSettings

__all__ = [
    "CredentialsTokenProvider",
    "GoogleSheetsWriter",
    "MemorySheetWriter",
    "SheetWriter",
    "SINK_KINDS",
    "get_sheet_writer",
    "resolve_token_provider",
]

SINK_KINDS = ("sheets", "memory")


def get_sheet_writer(
    kind: str,
    settings: "SyncSettings",
    *,
    transport: Optional[httpx.BaseTransport] = None,
) -> SheetWriter:
    """Build the writer named by ``kind`` ("sheets" or "memory").

    Raises:
        ConfigurationError: If no usable Google credentials are configured
        ValueError: For an unknown kind
    """
    if kind == "memory":
        return MemorySheetWriter()
    if kind == "sheets":
        return GoogleSheetsWriter(
            settings.spreadsheet_id,
            resolve_token_provider(
                access_token=settings.sheets_access_token,
                credentials_json_base64=settings.credentials_json_base64,
                credentials_file_path=settings.credentials_file_path,
            ),
            executor=BackoffExecutor(settings.max_retries, settings.retry_delay),
            base_url=settings.sheets_base_url,
            timeout=settings.request_timeout,
            transport=transport,
        )
    raise ValueError(f"Unknown sink '{kind}'. Valid sinks: {', '.join(SINK_KINDS)}")
