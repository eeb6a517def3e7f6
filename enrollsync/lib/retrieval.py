"""Full retrieval of a paginated collection.

The driver fetches page 0 to learn how many pages exist, then walks the
remaining pages in fixed-size batches, one batch at a time, each fetched
concurrently by the BatchOrchestrator. Records accumulate in memory and are
returned once, so the caller can replace the sink's content in one operation.

A failed batch is logged and skipped; only cancellation aborts the run.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Generic, List, Mapping, TypeVar

from enrollsync.lib.batch import BatchOrchestrator, SupportsFetchPage
from enrollsync.lib.cancellation import CancellationToken
from enrollsync.lib.errors import Cancelled, DecodeError, SyncError

logger = logging.getLogger(__name__)

__all__ = ["RetrievalDriver", "RetrievalResult"]

R = TypeVar("R")


@dataclass
class RetrievalResult(Generic[R]):
    """Finalized outcome of one retrieval run."""

    records: List[R] = field(default_factory=list)
    total_pages: int = 0
    total_elements: int = 0
    failed_pages: List[int] = field(default_factory=list)
    skipped_batches: int = 0
    elapsed_seconds: float = 0.0

    @property
    def is_empty(self) -> bool:
        return self.total_pages == 0 or self.total_elements == 0

    @property
    def is_complete(self) -> bool:
        return not self.failed_pages

    def summary(self) -> str:
        if self.is_complete:
            return f"{len(self.records)} records from {self.total_pages} pages"
        return (
            f"{len(self.records)} records; {len(self.failed_pages)} of "
            f"{self.total_pages} pages unavailable"
        )


class RetrievalDriver(Generic[R]):
    """Drive a whole run: discovery on page 0, then sequential batches.

    Example:
        driver = RetrievalDriver(fetcher)
        result = driver.retrieve_all(
            cancel,
            "/academico/matriculas",
            page_size=500,
            max_pages_per_batch=50,
            concurrency_limit=10,
            filters={"idPeriodoLetivo": "123"},
        )
    """

    def __init__(self, fetcher: SupportsFetchPage[R]) -> None:
        self.fetcher = fetcher

    def retrieve_all(
        self,
        cancel: CancellationToken,
        endpoint: str,
        page_size: int,
        max_pages_per_batch: int,
        concurrency_limit: int,
        filters: Mapping[str, str],
    ) -> RetrievalResult[R]:
        """Fetch every page of ``endpoint``.

        Returns:
            RetrievalResult holding all records and the failure accounting

        Raises:
            Cancelled: If the run is cancelled at any point
            SyncError: If page 0 cannot be fetched (the run cannot be planned)
        """
        if max_pages_per_batch < 1:
            raise ValueError("max_pages_per_batch must be >= 1")

        start_time = time.monotonic()
        run_filters: Mapping[str, str] = MappingProxyType(dict(filters))

        logger.info("Fetching initial page (0) of %s to get total pages...", endpoint)
        first_records, page = self.fetcher.fetch_page(
            cancel, endpoint, 0, page_size, run_filters
        )
        if page is None:
            raise DecodeError(
                "API response for page 0 did not contain pagination info",
                details={"endpoint": endpoint},
            )

        result: RetrievalResult[R] = RetrievalResult(
            total_pages=page.total_pages,
            total_elements=page.total_elements,
        )
        logger.info(
            "Initial page fetched. Total pages: %d (total elements: %d)",
            page.total_pages,
            page.total_elements,
        )

        if result.is_empty:
            logger.info("Total pages or elements is zero. Nothing to retrieve.")
            result.elapsed_seconds = time.monotonic() - start_time
            return result

        accumulator: List[R] = list(first_records)
        orchestrator: BatchOrchestrator[R] = BatchOrchestrator(self.fetcher, endpoint, page_size)

        current_page = 1
        while current_page < page.total_pages:
            cancel.raise_if_cancelled(f"retrieval before batch starting at page {current_page}")

            batch_size = min(max_pages_per_batch, page.total_pages - current_page)
            last_page = current_page + batch_size - 1
            logger.info(
                "Processing batch: pages %d to %d (batch size: %d)...",
                current_page,
                last_page,
                batch_size,
            )

            try:
                outcome = orchestrator.fetch_batch(
                    cancel, current_page, batch_size, run_filters, concurrency_limit
                )
            except Cancelled:
                logger.warning(
                    "Retrieval cancelled at batch %d-%d. Records fetched before cancellation: %d",
                    current_page,
                    last_page,
                    len(accumulator),
                )
                raise
            except SyncError as exc:
                logger.error(
                    "Failed to process batch of pages %d-%d: %s. Moving to next batch.",
                    current_page,
                    last_page,
                    exc,
                )
                result.skipped_batches += 1
                result.failed_pages.extend(range(current_page, last_page + 1))
            else:
                accumulator.extend(outcome.records)
                result.failed_pages.extend(outcome.failed_pages)

            current_page += batch_size
            self._log_progress(start_time, current_page, page.total_pages, len(accumulator))

        cancel.raise_if_cancelled("retrieval")

        result.records = accumulator
        result.elapsed_seconds = time.monotonic() - start_time
        logger.info("Retrieval completed: %s", result.summary())
        return result

    @staticmethod
    def _log_progress(start_time: float, current_page: int, total_pages: int, processed: int) -> None:
        elapsed = time.monotonic() - start_time
        progress = current_page / total_pages * 100 if total_pages > 0 else 0.0
        logger.info(
            "Pages (batches started): %d/%d (%.1f%%) | Records: %d | Time: %.1fs",
            current_page,
            total_pages,
            progress,
            processed,
            elapsed,
        )
