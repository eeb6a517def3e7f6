"""Abstract base class for sheet writers.

Defines the capability interface the sync service depends on. The retrieval
engine never talks to a concrete sink.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence

from enrollsync.lib.cancellation import CancellationToken

logger = logging.getLogger(__name__)

__all__ = ["SheetWriter"]


class SheetWriter(ABC):
    """Tabular destination made of named targets (spreadsheet tabs).

    Every operation must be idempotent, tolerate transient remote failures
    and accept zero rows as a no-op.
    """

    @property
    @abstractmethod
    def kind(self) -> str:
        """Short name of the backend (e.g. 'memory', 'google_sheets')."""
        pass

    @abstractmethod
    def ensure_target_exists(self, name: str, *, cancel: Optional[CancellationToken] = None) -> None:
        """Create the target ``name`` if it does not exist yet."""
        pass

    @abstractmethod
    def clear(self, name: str, *, cancel: Optional[CancellationToken] = None) -> None:
        """Remove every value from target ``name``."""
        pass

    @abstractmethod
    def set_headers(
        self,
        name: str,
        headers: Sequence[str],
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        """Write ``headers`` as the first row of target ``name``."""
        pass

    @abstractmethod
    def append_rows(
        self,
        name: str,
        rows: Sequence[Sequence[Any]],
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        """Append ``rows`` after the last non-empty row of target ``name``."""
        pass

    def overwrite_all(
        self,
        name: str,
        headers: Sequence[str],
        rows: Sequence[Sequence[Any]],
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        """Replace the content of ``name`` with ``headers`` followed by ``rows``.

        Backends may override this with a single remote write; the default
        composes the primitive operations.
        """
        self.ensure_target_exists(name, cancel=cancel)
        self.clear(name, cancel=cancel)
        self.set_headers(name, headers, cancel=cancel)
        self.append_rows(name, rows, cancel=cancel)

    @staticmethod
    def _all_values(headers: Sequence[str], rows: Sequence[Sequence[Any]]) -> List[List[Any]]:
        values: List[List[Any]] = []
        if headers:
            values.append(list(headers))
        values.extend(list(row) for row in rows)
        return values

    def close(self) -> None:
        """Release backend resources. No-op by default."""
        pass
