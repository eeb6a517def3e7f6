"""Enrollment sync service.

Ties the pieces together for one run: pick the target sheet, retrieve every
enrollment page for the requested period, map records to rows and replace the
sheet's content in a single ``overwrite_all``. A cancelled run never writes.

Example:
    settings = load_settings()
    with EnrollmentSync(settings, MemorySheetWriter()) as service:
        cancel = CancellationToken.with_timeout(settings.run_timeout)
        summary = service.run(SyncRequest(period_id=123, status="ATIVA"), cancel)
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import httpx

from enrollsync.lib.auth import TokenCache
from enrollsync.lib.cancellation import CancellationToken
from enrollsync.lib.client import ApiClient
from enrollsync.lib.errors import Cancelled, SyncError
from enrollsync.lib.fetcher import PAGE_SIZE_PARAM, PageFetcher
from enrollsync.lib.mapping import ENROLLMENT_HEADERS, enrollments_to_rows
from enrollsync.lib.models import Enrollment, Period
from enrollsync.lib.rate_limiter import RateLimiter
from enrollsync.lib.resilience import BackoffExecutor
from enrollsync.lib.retrieval import RetrievalDriver
from enrollsync.lib.settings import SyncRequest, SyncSettings
from enrollsync.lib.sinks.base import SheetWriter

logger = logging.getLogger(__name__)

__all__ = ["EnrollmentSync", "PeriodLookup", "SyncSummary"]


@dataclass
class SyncSummary:
    """What a completed run did."""

    sheet_name: str
    period_id: int
    status: str
    records_written: int
    total_pages: int
    total_elements: int
    failed_pages: List[int] = field(default_factory=list)
    skipped_batches: int = 0
    elapsed_seconds: float = 0.0
    period_name: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return not self.failed_pages

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["is_complete"] = self.is_complete
        return data


class PeriodLookup:
    """Resolve an academic period id to its display name.

    Tries each configured notice status in turn and returns the first period
    whose id matches. Without configured statuses a single unfiltered query is
    made. Lookup failures are logged and reported as "not found".
    """

    def __init__(
        self,
        fetcher: PageFetcher[Period],
        endpoint: str,
        statuses: Sequence[str],
        page_size: int,
    ) -> None:
        self.fetcher = fetcher
        self.endpoint = endpoint
        self.statuses = list(statuses)
        self.page_size = page_size

    def find_period_name(self, cancel: CancellationToken, org_id: int, period_id: int) -> Optional[str]:
        statuses: List[Optional[str]] = list(self.statuses) or [None]
        for status in statuses:
            params = {
                "idOrg": str(org_id),
                "idPeriodoLetivo": str(period_id),
                PAGE_SIZE_PARAM: str(self.page_size),
            }
            if status is not None:
                params["statusEdital"] = status

            try:
                periods = self.fetcher.fetch_elements(cancel, self.endpoint, params)
            except Cancelled:
                raise
            except SyncError as exc:
                logger.warning("Error fetching period for status %s: %s", status, exc.message)
                return None

            for period in periods:
                if period.period_id == period_id:
                    logger.info(
                        "Found matching period for ID %d (status: %s): %s",
                        period_id,
                        status,
                        period.period_name,
                    )
                    return period.period_name

            logger.info("No period matching ID %d found for status '%s'", period_id, status)

        return None


class EnrollmentSync:
    """One configured upstream API plus one sheet writer."""

    def __init__(
        self,
        settings: SyncSettings,
        writer: SheetWriter,
        *,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.settings = settings
        self.writer = writer

        rate_limiter = None
        if settings.requests_per_second:
            rate_limiter = RateLimiter(settings.requests_per_second)

        self.client = ApiClient(
            settings.api_base,
            executor=BackoffExecutor(settings.max_retries, settings.retry_delay),
            timeout=settings.request_timeout,
            max_connections=settings.max_parallel_requests,
            rate_limiter=rate_limiter,
            transport=transport,
        )
        self.tokens = TokenCache(
            self.client,
            auth_endpoint=settings.auth_endpoint,
            credential=settings.user_token,
            validity_seconds=settings.auth_token_validity,
        )
        self.fetcher: PageFetcher[Enrollment] = PageFetcher(self.client, self.tokens, Enrollment)
        self.driver: RetrievalDriver[Enrollment] = RetrievalDriver(self.fetcher)
        self.periods = PeriodLookup(
            PageFetcher(self.client, self.tokens, Period),
            settings.notices_endpoint,
            settings.notice_statuses,
            settings.page_size,
        )

    def __enter__(self) -> "EnrollmentSync":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        self.client.close()
        self.writer.close()

    def determine_sheet_name(self, request: SyncRequest, period_name: Optional[str] = None) -> str:
        """Name of the tab a run writes to.

        Unknown or missing organizations fall back to the default sheet name.
        """
        return self.settings.sheet_name_template.format(
            org=self.settings.organization_name(request.org_id),
            status=request.status,
            period_id=request.period_id,
            period_name=period_name or request.period_id,
        )

    def run(
        self,
        request: SyncRequest,
        cancel: CancellationToken,
        *,
        resolve_period_name: bool = False,
    ) -> SyncSummary:
        """Retrieve every enrollment matching ``request`` and overwrite its sheet.

        Raises:
            Cancelled: If the deadline passes or the run is aborted; nothing
                is written in that case
            SyncError: If the run cannot be planned or the sink write fails
        """
        start_time = time.monotonic()

        period_name = None
        if resolve_period_name:
            period_name = self.periods.find_period_name(cancel, request.org_id or 0, request.period_id)

        sheet_name = self.determine_sheet_name(request, period_name)
        logger.info("Sheet name determined: '%s'", sheet_name)

        result = self.driver.retrieve_all(
            cancel,
            self.settings.enrollments_endpoint,
            page_size=self.settings.page_size,
            max_pages_per_batch=self.settings.max_pages_per_batch,
            concurrency_limit=self.settings.max_parallel_requests,
            filters=request.filters(),
        )

        rows = enrollments_to_rows(result.records, ENROLLMENT_HEADERS)
        cancel.raise_if_cancelled(f"write to '{sheet_name}'")
        logger.info("All %d enrollments fetched. Writing to sheet '%s'...", len(rows), sheet_name)
        self.writer.overwrite_all(sheet_name, ENROLLMENT_HEADERS, rows, cancel=cancel)

        summary = SyncSummary(
            sheet_name=sheet_name,
            period_id=request.period_id,
            status=request.status,
            records_written=len(rows),
            total_pages=result.total_pages,
            total_elements=result.total_elements,
            failed_pages=list(result.failed_pages),
            skipped_batches=result.skipped_batches,
            elapsed_seconds=time.monotonic() - start_time,
            period_name=period_name,
        )
        if summary.is_complete:
            logger.info("Process completed! Total: %d enrollments written to sheet '%s'", len(rows), sheet_name)
        else:
            logger.warning(
                "Process completed with gaps: %d enrollments written to '%s', %d pages unavailable",
                len(rows),
                sheet_name,
                len(summary.failed_pages),
            )
        return summary

    def ping(self, cancel: CancellationToken) -> Dict[str, Any]:
        """Check that the upstream API accepts the configured credential."""
        self.tokens.invalidate()
        token = self.tokens.get_token(cancel)
        return {"status": "ok", "message": "pong", "token_expires_in": round(token.expires_at - time.monotonic())}
