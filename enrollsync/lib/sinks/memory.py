"""In-memory sheet writer.

Keeps every tab as a list of rows and records each operation, which makes it
useful for dry runs (``--sink memory``) and for asserting sink behaviour.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional, Sequence, Tuple

from enrollsync.lib.cancellation import CancellationToken
from enrollsync.lib.sinks.base import SheetWriter

logger = logging.getLogger(__name__)

__all__ = ["MemorySheetWriter"]


class MemorySheetWriter(SheetWriter):
    """Thread-safe in-memory tabs.

    Example:
        writer = MemorySheetWriter()
        writer.overwrite_all("Enrollments", ["id"], [[1], [2]])
        writer.tabs["Enrollments"]  # [["id"], [1], [2]]
        writer.operations           # [("ensure", ...), ("clear", ...), ("write", ...)]
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.tabs: Dict[str, List[List[Any]]] = {}
        self.operations: List[Tuple[str, str, int]] = []

    @property
    def kind(self) -> str:
        return "memory"

    def _record(self, op: str, name: str, count: int = 0) -> None:
        self.operations.append((op, name, count))

    def _check(self, cancel: Optional[CancellationToken], op: str, name: str) -> None:
        if cancel is not None:
            cancel.raise_if_cancelled(f"{op} on '{name}'")

    def ensure_target_exists(self, name: str, *, cancel: Optional[CancellationToken] = None) -> None:
        self._check(cancel, "ensure", name)
        with self._lock:
            if name not in self.tabs:
                logger.info("Creating tab '%s'", name)
                self.tabs[name] = []
            self._record("ensure", name)

    def clear(self, name: str, *, cancel: Optional[CancellationToken] = None) -> None:
        self._check(cancel, "clear", name)
        with self._lock:
            self.tabs[name] = []
            self._record("clear", name)

    def set_headers(
        self,
        name: str,
        headers: Sequence[str],
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        self._check(cancel, "set_headers", name)
        with self._lock:
            tab = self.tabs.setdefault(name, [])
            if tab:
                tab[0] = list(headers)
            else:
                tab.append(list(headers))
            self._record("set_headers", name, len(headers))

    def append_rows(
        self,
        name: str,
        rows: Sequence[Sequence[Any]],
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        if not rows:
            return
        self._check(cancel, "append", name)
        with self._lock:
            self.tabs.setdefault(name, []).extend(list(row) for row in rows)
            self._record("append", name, len(rows))

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
        self._check(cancel, "write", name)
        values = self._all_values(headers, rows)
        with self._lock:
            self.tabs[name] = values
            self._record("write", name, len(values))
        logger.info("Tab '%s' overwritten with %d total rows", name, len(values))

    def rows(self, name: str) -> List[List[Any]]:
        """Data rows of ``name`` (everything below the header row)."""
        with self._lock:
            return [list(row) for row in self.tabs.get(name, [])[1:]]
