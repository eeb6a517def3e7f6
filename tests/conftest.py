"""Pytest configuration and fixtures."""

import math
import sys
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import httpx
import pytest

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from enrollsync.lib.cancellation import CancellationToken  # noqa: E402
from enrollsync.lib.settings import SyncSettings  # noqa: E402

API_BASE = "http://api.test"


def enrollment_payload(enrollment_id: int, **overrides: Any) -> Dict[str, Any]:
    """One enrollment as the upstream API serializes it."""
    payload: Dict[str, Any] = {
        "idMatricula": enrollment_id,
        "aluno": f"Aluno {enrollment_id}",
        "ra": f"RA{enrollment_id:06d}",
        "curso": "Enfermagem",
        "turma": "T1",
        "status": "ATIVA",
        "periodoLetivo": "2025/1",
        "unidadeFisica": "Campus Centro",
        "organizacao": "EAD",
        "idOrg": 20,
        "dataMatricula": "2025-02-01",
        "dataAtivacao": "",
        "dataCadastro": None,
    }
    payload.update(overrides)
    return payload


def page_payload(
    elements: List[Dict[str, Any]],
    *,
    current_page: int,
    page_size: int,
    total_elements: int,
) -> Dict[str, Any]:
    total_pages = math.ceil(total_elements / page_size) if page_size else 0
    return {
        "page": {
            "currentPage": current_page,
            "pageSize": page_size,
            "totalElements": total_elements,
            "totalPages": total_pages,
        },
        "elements": elements,
    }


class FakeAcademicApi:
    """In-process stand-in for the upstream API, served via httpx.MockTransport.

    Serves ``total_elements`` enrollments, paginated by the requested page
    size. Pages listed in ``failing_pages`` answer 404.
    """

    def __init__(
        self,
        total_elements: int,
        *,
        token: str = "bearer-1",
        failing_pages: Iterable[int] = (),
        periods: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        self.total_elements = total_elements
        self.token = token
        self.failing_pages = set(failing_pages)
        self.periods = periods or []
        self.auth_calls = 0
        self.page_requests: List[int] = []
        self.requests: List[httpx.Request] = []
        self._lock = threading.Lock()

    def handler(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append(request)

        if request.url.path == "/auth/token":
            with self._lock:
                self.auth_calls += 1
            return httpx.Response(200, json={"token": self.token})

        if request.headers.get("Authorization") != f"Bearer {self.token}":
            return httpx.Response(401, text="invalid token")

        if request.url.path == "/academico/matriculas":
            page = int(request.url.params["currentPage"])
            size = int(request.url.params["pageSize"])
            with self._lock:
                self.page_requests.append(page)
            if page in self.failing_pages:
                return httpx.Response(404, text=f"page {page} not found")
            start = page * size
            end = min(start + size, self.total_elements)
            elements = [enrollment_payload(i) for i in range(start, end)]
            return httpx.Response(
                200,
                json=page_payload(
                    elements,
                    current_page=page,
                    page_size=size,
                    total_elements=self.total_elements,
                ),
            )

        if request.url.path == "/processos-seletivos/editais":
            status = request.url.params.get("statusEdital")
            matching = [p for p in self.periods if status is None or p.get("statusEdital") == status]
            return httpx.Response(200, json={"page": None, "elements": matching})

        return httpx.Response(404, text="unknown endpoint")

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def cancel():
    """A token without deadline."""
    return CancellationToken()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    """Settings pointing at the fake API, with instant retries."""
    return SyncSettings(
        api_base=API_BASE,
        user_token="static-credential",
        spreadsheet_id="sheet-123",
        sheets_access_token="ya29.test",
        page_size=500,
        max_pages_per_batch=50,
        max_parallel_requests=4,
        max_retries=2,
        retry_delay=0.0,
    )
