"""Concurrent fetching of a contiguous range of pages.

A batch is fetched by a bounded pool of worker threads draining one shared
queue of page indices. Successful pages are handed to a lock-protected sink,
failures are counted, and the caller reads both only after every worker has
finished.

Failure semantics:
- one failed page lowers the record count but does not fail the batch
- every page failing raises BatchFailed
- cancellation raises Cancelled, whatever was fetched so far
"""

from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Generic, List, Mapping, Optional, Protocol, Tuple, TypeVar

from enrollsync.lib.cancellation import CancellationToken
from enrollsync.lib.errors import BatchFailed, Cancelled, SyncError
from enrollsync.lib.models import PageDescriptor

logger = logging.getLogger(__name__)

__all__ = ["BatchOrchestrator", "BatchOutcome", "BatchRequest", "SupportsFetchPage"]

R = TypeVar("R")
R_co = TypeVar("R_co", covariant=True)


class SupportsFetchPage(Protocol[R_co]):
    """Anything that can fetch one page (PageFetcher, or a test double)."""

    def fetch_page(
        self,
        cancel: CancellationToken,
        endpoint: str,
        page_index: int,
        page_size: int,
        filters: Mapping[str, str],
    ) -> Tuple[List[R_co], Optional[PageDescriptor]]:
        ...


@dataclass(frozen=True)
class BatchRequest:
    """Unit of work given to the orchestrator."""

    start_page: int
    page_count: int
    filters: Mapping[str, str] = field(default_factory=dict)

    @property
    def end_page(self) -> int:
        """Last page index of the batch (inclusive)."""
        return self.start_page + self.page_count - 1

    def page_indices(self) -> List[int]:
        return list(range(self.start_page, self.start_page + self.page_count))

    def describe(self) -> str:
        return f"batch {self.start_page}-{self.end_page}"


@dataclass
class BatchOutcome(Generic[R]):
    """Merged records of a batch plus its failure accounting."""

    records: List[R] = field(default_factory=list)
    failed_pages: List[int] = field(default_factory=list)

    @property
    def failure_count(self) -> int:
        return len(self.failed_pages)


class _BatchSink(Generic[R]):
    """Append-only result store shared by the workers of one batch."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pages: Dict[int, List[R]] = {}
        self._failed: List[int] = []

    def add_page(self, page_index: int, records: List[R]) -> None:
        with self._lock:
            self._pages[page_index] = records

    def add_failure(self, page_index: int) -> None:
        with self._lock:
            self._failed.append(page_index)

    def outcome(self) -> BatchOutcome[R]:
        with self._lock:
            records: List[R] = []
            for page_index in sorted(self._pages):
                records.extend(self._pages[page_index])
            return BatchOutcome(records=records, failed_pages=sorted(self._failed))


class BatchOrchestrator(Generic[R]):
    """Fetch many pages in parallel within a concurrency budget.

    Example:
        orchestrator = BatchOrchestrator(fetcher, "/academico/matriculas", page_size=500)
        outcome = orchestrator.fetch_batch(cancel, 1, 50, filters, concurrency_limit=10)
    """

    def __init__(
        self,
        fetcher: SupportsFetchPage[R],
        endpoint: str,
        page_size: int,
    ) -> None:
        self.fetcher = fetcher
        self.endpoint = endpoint
        self.page_size = page_size

    def fetch_batch(
        self,
        cancel: CancellationToken,
        start_page: int,
        page_count: int,
        filters: Mapping[str, str],
        concurrency_limit: int,
    ) -> BatchOutcome[R]:
        """Fetch pages ``[start_page, start_page + page_count)``.

        Returns:
            BatchOutcome with the records of every successful page, in page
            order, and the indices of the pages that failed

        Raises:
            Cancelled: If the token was set, regardless of partial progress
            BatchFailed: If every page failed with a non-cancellation error
        """
        request = BatchRequest(start_page=start_page, page_count=page_count, filters=filters)
        if page_count <= 0:
            return BatchOutcome()

        pending: "queue.Queue[int]" = queue.Queue()
        for page_index in request.page_indices():
            pending.put(page_index)

        sink: _BatchSink[R] = _BatchSink()
        workers = max(1, min(concurrency_limit, page_count))

        logger.info(
            "Starting concurrent fetch of %d pages (%s) (max concurrency: %d)",
            page_count,
            request.describe(),
            workers,
        )

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="page-worker") as pool:
            futures = [
                pool.submit(self._work, cancel, request, pending, sink)
                for _ in range(workers)
            ]
        # Leaving the executor joined every worker; surface unexpected crashes.
        for future in futures:
            future.result()

        if cancel.is_cancelled():
            logger.warning("Batch processing cancelled (%s)", request.describe())
            raise Cancelled(f"{request.describe()} cancelled: {cancel.reason}")

        outcome = sink.outcome()
        if outcome.failure_count == page_count:
            logger.error(
                "Batch completed. ALL %d requests failed (%s)",
                page_count,
                request.describe(),
            )
            raise BatchFailed(start_page, page_count)

        logger.info(
            "Batch completed. %d records collected from successful requests "
            "(%d failures) in %s",
            len(outcome.records),
            outcome.failure_count,
            request.describe(),
        )
        return outcome

    def _work(
        self,
        cancel: CancellationToken,
        request: BatchRequest,
        pending: "queue.Queue[int]",
        sink: _BatchSink[R],
    ) -> None:
        while not cancel.is_cancelled():
            try:
                page_index = pending.get_nowait()
            except queue.Empty:
                return

            logger.debug("-> Fetching page %d (%s)", page_index, request.describe())
            try:
                records, _ = self.fetcher.fetch_page(
                    cancel,
                    self.endpoint,
                    page_index,
                    self.page_size,
                    request.filters,
                )
            except SyncError as exc:
                if isinstance(exc, Cancelled) or cancel.is_cancelled():
                    logger.info("Worker stopping: page %d cancelled: %s", page_index, exc)
                    return
                logger.warning("Failed to fetch page %d after retries: %s", page_index, exc)
                sink.add_failure(page_index)
                continue

            if cancel.is_cancelled():
                logger.info("Cancelled before handing off page %d", page_index)
                return
            sink.add_page(page_index, records)
            logger.debug(
                "<- Page %d (%s): %d records",
                page_index,
                request.describe(),
                len(records),
            )
