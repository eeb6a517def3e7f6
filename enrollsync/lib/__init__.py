"""Enrollment sync library modules.

The retrieval engine (backoff, token cache, page fetcher, batch orchestrator,
retrieval driver) plus the settings, sinks and sync service built on it.
"""

from enrollsync.lib.auth import Token, TokenCache
from enrollsync.lib.batch import BatchOrchestrator, BatchOutcome, BatchRequest
from enrollsync.lib.cancellation import CancellationToken
from enrollsync.lib.client import ApiClient
from enrollsync.lib.errors import (
    AuthError,
    BatchFailed,
    Cancelled,
    ConfigurationError,
    DecodeError,
    SinkError,
    SyncError,
    TerminalHTTPError,
    TransientError,
)
from enrollsync.lib.fetcher import PageFetcher
from enrollsync.lib.mapping import ENROLLMENT_HEADERS, enrollment_to_row, enrollments_to_rows
from enrollsync.lib.models import Enrollment, PageDescriptor, PageEnvelope, Period
from enrollsync.lib.rate_limiter import RateLimiter
from enrollsync.lib.resilience import BackoffExecutor, raise_for_status
from enrollsync.lib.retrieval import RetrievalDriver, RetrievalResult
from enrollsync.lib.settings import SyncRequest, SyncSettings, load_settings
from enrollsync.lib.sinks import GoogleSheetsWriter, MemorySheetWriter, SheetWriter, get_sheet_writer
from enrollsync.lib.sync import EnrollmentSync, PeriodLookup, SyncSummary

__all__ = [
    # Engine
    "ApiClient",
    "BackoffExecutor",
    "BatchOrchestrator",
    "BatchOutcome",
    "BatchRequest",
    "CancellationToken",
    "PageFetcher",
    "RateLimiter",
    "RetrievalDriver",
    "RetrievalResult",
    "Token",
    "TokenCache",
    "raise_for_status",
    # Models
    "ENROLLMENT_HEADERS",
    "Enrollment",
    "PageDescriptor",
    "PageEnvelope",
    "Period",
    "enrollment_to_row",
    "enrollments_to_rows",
    # Errors
    "AuthError",
    "BatchFailed",
    "Cancelled",
    "ConfigurationError",
    "DecodeError",
    "SinkError",
    "SyncError",
    "TerminalHTTPError",
    "TransientError",
    # Service
    "EnrollmentSync",
    "GoogleSheetsWriter",
    "MemorySheetWriter",
    "PeriodLookup",
    "SheetWriter",
    "SyncRequest",
    "SyncSettings",
    "SyncSummary",
    "get_sheet_writer",
    "load_settings",
]
