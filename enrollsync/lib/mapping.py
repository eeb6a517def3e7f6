"""Field mapping from enrollment records to sheet rows."""

from __future__ import annotations

from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Optional

from enrollsync.lib.models import Enrollment

__all__ = ["ENROLLMENT_HEADERS", "Row", "enrollment_to_row", "enrollments_to_rows"]

Row = List[Any]


def _text(value: Optional[str]) -> str:
    return value if value is not None else ""


def _date(value: Optional[date]) -> str:
    return value.isoformat() if value is not None else ""


# Column header -> cell value. Order defines the column order of the sheet.
_COLUMNS: Dict[str, Callable[[Enrollment], Any]] = {
    "idMatricula": lambda e: e.enrollment_id,
    "aluno": lambda e: _text(e.student),
    "ra": lambda e: _text(e.ra),
    "curso": lambda e: _text(e.course),
    "turma": lambda e: _text(e.class_name),
    "status": lambda e: _text(e.status),
    "periodoLetivo": lambda e: _text(e.academic_term),
    "unidadeFisica": lambda e: _text(e.physical_unit),
    "organizacao": lambda e: _text(e.organization),
    "idOrg": lambda e: e.org_id,
    "dataMatricula": lambda e: _date(e.enrolled_on),
    "dataAtivacao": lambda e: _date(e.activated_on),
    "dataCadastro": lambda e: _date(e.created_on),
}

ENROLLMENT_HEADERS: List[str] = list(_COLUMNS)


def enrollment_to_row(enrollment: Enrollment, headers: Iterable[str] = ENROLLMENT_HEADERS) -> Row:
    """Map one enrollment to cell values; unknown headers map to ""."""
    return [_COLUMNS[h](enrollment) if h in _COLUMNS else "" for h in headers]


def enrollments_to_rows(
    enrollments: Iterable[Enrollment],
    headers: Iterable[str] = ENROLLMENT_HEADERS,
) -> List[Row]:
    header_list = list(headers)
    return [enrollment_to_row(e, header_list) for e in enrollments]
