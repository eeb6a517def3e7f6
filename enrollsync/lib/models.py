"""Wire models for the upstream academic API.

All models are pydantic v2 models keyed by the API's camelCase field names
(aliases) and exposed under snake_case attribute names.

The paginated envelope is generic over the record type so enrollments,
periods and any future collection share one decoder:

    envelope = PageEnvelope[Enrollment].model_validate_json(body)
    envelope.page.total_pages
    envelope.elements[0].student
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

__all__ = [
    "PageDescriptor",
    "PageEnvelope",
    "AuthResponse",
    "Enrollment",
    "Period",
    "parse_api_date",
]

T = TypeVar("T")


def parse_api_date(value: Any) -> Optional[date]:
    """Parse the API's ``YYYY-MM-DD`` dates.

    Empty strings and nulls mean "no date". Timestamps are truncated to their
    date part.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError as exc:
        raise ValueError(f"error parsing date '{text}': {exc}") from exc


class _ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class PageDescriptor(_ApiModel):
    """Pagination metadata reported by the API on every page."""

    current_page: int = Field(default=0, alias="currentPage")
    page_size: int = Field(default=0, alias="pageSize")
    total_elements: int = Field(default=0, alias="totalElements")
    total_pages: int = Field(default=0, alias="totalPages")


class PageEnvelope(BaseModel, Generic[T]):
    """``{"page": {...}, "elements": [...]}`` response envelope."""

    model_config = ConfigDict(extra="ignore")

    page: Optional[PageDescriptor] = None
    elements: List[T] = Field(default_factory=list)

    @field_validator("elements", mode="before")
    @classmethod
    def _null_elements(cls, v: Any) -> Any:
        return [] if v is None else v


class AuthResponse(_ApiModel):
    token: str = ""


class Enrollment(_ApiModel):
    """One student enrollment (``matrícula``)."""

    enrollment_id: int = Field(default=0, alias="idMatricula")
    student: Optional[str] = Field(default=None, alias="aluno")
    ra: Optional[str] = None
    course: Optional[str] = Field(default=None, alias="curso")
    class_name: Optional[str] = Field(default=None, alias="turma")
    status: Optional[str] = None
    academic_term: Optional[str] = Field(default=None, alias="periodoLetivo")
    physical_unit: Optional[str] = Field(default=None, alias="unidadeFisica")
    organization: Optional[str] = Field(default=None, alias="organizacao")
    org_id: int = Field(default=0, alias="idOrg")
    enrolled_on: Optional[date] = Field(default=None, alias="dataMatricula")
    activated_on: Optional[date] = Field(default=None, alias="dataAtivacao")
    created_on: Optional[date] = Field(default=None, alias="dataCadastro")

    @field_validator("enrolled_on", "activated_on", "created_on", mode="before")
    @classmethod
    def _parse_dates(cls, v: Any) -> Optional[date]:
        return parse_api_date(v)


class Period(_ApiModel):
    """An academic period as listed by the process notices endpoint."""

    org_id: int = Field(default=0, alias="idOrg")
    organization: Optional[str] = Field(default=None, alias="organizacao")
    period_id: int = Field(default=0, alias="idPeriodoLetivo")
    period_name: Optional[str] = Field(default=None, alias="periodoLetivo")
    notice_id: int = Field(default=0, alias="idEdital")
    description: Optional[str] = Field(default=None, alias="descricao")
    notice_status: Optional[str] = Field(default=None, alias="statusEdital")
    starts_on: Optional[date] = Field(default=None, alias="dataInicio")
    ends_on: Optional[date] = Field(default=None, alias="dataTermino")

    @field_validator("starts_on", "ends_on", mode="before")
    @classmethod
    def _parse_dates(cls, v: Any) -> Optional[date]:
        return parse_api_date(v)
