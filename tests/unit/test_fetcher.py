"""Tests for PageFetcher and ApiClient over httpx.MockTransport."""

import httpx
import pytest

from enrollsync.lib.auth import TokenCache
from enrollsync.lib.client import USER_AGENT, ApiClient
from enrollsync.lib.errors import AuthError, DecodeError, TerminalHTTPError, TransientError
from enrollsync.lib.fetcher import PageFetcher
from enrollsync.lib.models import Enrollment, Period
from enrollsync.lib.resilience import BackoffExecutor
from tests.conftest import API_BASE, FakeAcademicApi, enrollment_payload, page_payload


def _fetcher(transport, record_type=Enrollment, max_retries=0):
    client = ApiClient(
        API_BASE,
        executor=BackoffExecutor(max_retries=max_retries, retry_delay=0.0),
        transport=transport,
    )
    tokens = TokenCache(client, auth_endpoint="/auth/token", credential="static")
    return PageFetcher(client, tokens, record_type)


class TestFetchPage:
    """Tests for fetching one page."""

    def test_request_shape_and_decoding(self, cancel):
        api = FakeAcademicApi(total_elements=1200)
        fetcher = _fetcher(api.transport)

        records, page = fetcher.fetch_page(
            cancel, "/academico/matriculas", 1, 500, {"idPeriodoLetivo": "77", "statusMatricula": "ATIVA"}
        )

        assert len(records) == 500
        assert isinstance(records[0], Enrollment)
        assert records[0].enrollment_id == 500
        assert page.total_pages == 3
        assert page.total_elements == 1200

        request = api.requests[-1]
        assert request.method == "GET"
        assert request.url.params["currentPage"] == "1"
        assert request.url.params["pageSize"] == "500"
        assert request.url.params["idPeriodoLetivo"] == "77"
        assert request.url.params["statusMatricula"] == "ATIVA"
        assert request.headers["Authorization"] == "Bearer bearer-1"
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["User-Agent"] == USER_AGENT

    def test_last_page_is_partial(self, cancel):
        api = FakeAcademicApi(total_elements=1200)
        records, _ = _fetcher(api.transport).fetch_page(cancel, "/academico/matriculas", 2, 500, {})
        assert len(records) == 200

    def test_token_is_reused_across_pages(self, cancel):
        api = FakeAcademicApi(total_elements=1200)
        fetcher = _fetcher(api.transport)
        for page in range(3):
            fetcher.fetch_page(cancel, "/academico/matriculas", page, 500, {})
        assert api.auth_calls == 1

    def test_null_elements_decode_as_empty(self, cancel):
        def handler(request):
            if request.url.path == "/auth/token":
                return httpx.Response(200, json={"token": "t"})
            return httpx.Response(200, json={"page": {"totalPages": 0, "totalElements": 0}, "elements": None})

        records, page = _fetcher(httpx.MockTransport(handler)).fetch_page(cancel, "/x", 0, 10, {})
        assert records == []
        assert page.total_pages == 0

    def test_missing_page_block(self, cancel):
        def handler(request):
            if request.url.path == "/auth/token":
                return httpx.Response(200, json={"token": "t"})
            return httpx.Response(200, json={"elements": [enrollment_payload(1)]})

        records, page = _fetcher(httpx.MockTransport(handler)).fetch_page(cancel, "/x", 0, 10, {})
        assert len(records) == 1
        assert page is None


class TestFetchPageErrors:
    """Tests for failure classification."""

    def test_malformed_body_is_decode_error(self, cancel):
        def handler(request):
            if request.url.path == "/auth/token":
                return httpx.Response(200, json={"token": "t"})
            return httpx.Response(200, text="not json")

        with pytest.raises(DecodeError):
            _fetcher(httpx.MockTransport(handler)).fetch_page(cancel, "/x", 0, 10, {})

    def test_record_without_id_is_kept_with_zero_id(self, cancel):
        elements = [{"idMatricula": 1, "aluno": "a"}, {"aluno": "x"}]

        def handler(request):
            if request.url.path == "/auth/token":
                return httpx.Response(200, json={"token": "t"})
            return httpx.Response(
                200, json=page_payload(elements, current_page=0, page_size=10, total_elements=2)
            )

        records, _ = _fetcher(httpx.MockTransport(handler)).fetch_page(cancel, "/x", 0, 10, {})

        assert [r.enrollment_id for r in records] == [1, 0]
        assert records[1].student == "x"

    def test_mistyped_id_is_decode_error(self, cancel):
        def handler(request):
            if request.url.path == "/auth/token":
                return httpx.Response(200, json={"token": "t"})
            return httpx.Response(
                200,
                json=page_payload([{"idMatricula": "abc"}], current_page=0, page_size=10, total_elements=1),
            )

        with pytest.raises(DecodeError):
            _fetcher(httpx.MockTransport(handler)).fetch_page(cancel, "/x", 0, 10, {})

    def test_not_found_is_terminal(self, cancel):
        api = FakeAcademicApi(total_elements=1200, failing_pages=[1])
        with pytest.raises(TerminalHTTPError) as exc_info:
            _fetcher(api.transport).fetch_page(cancel, "/academico/matriculas", 1, 500, {})
        assert exc_info.value.status_code == 404

    def test_server_errors_are_retried_then_surface(self, cancel):
        calls = {"data": 0}

        def handler(request):
            if request.url.path == "/auth/token":
                return httpx.Response(200, json={"token": "t"})
            calls["data"] += 1
            return httpx.Response(503, text="maintenance")

        with pytest.raises(TransientError):
            _fetcher(httpx.MockTransport(handler), max_retries=2).fetch_page(cancel, "/x", 0, 10, {})
        assert calls["data"] == 3

    def test_transport_error_is_transient(self, cancel):
        def handler(request):
            if request.url.path == "/auth/token":
                return httpx.Response(200, json={"token": "t"})
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransientError, match="transport error"):
            _fetcher(httpx.MockTransport(handler)).fetch_page(cancel, "/x", 0, 10, {})

    def test_auth_failure_propagates(self, cancel):
        def handler(request):
            return httpx.Response(401, text="bad credential")

        with pytest.raises(AuthError):
            _fetcher(httpx.MockTransport(handler)).fetch_page(cancel, "/x", 0, 10, {})


class TestFetchElements:
    """Tests for unpaginated listings."""

    def test_period_listing(self, cancel):
        periods = [{"idPeriodoLetivo": 5, "periodoLetivo": "2025/1", "statusEdital": "ABERTO"}]
        api = FakeAcademicApi(total_elements=0, periods=periods)
        fetcher = _fetcher(api.transport, record_type=Period)

        result = fetcher.fetch_elements(cancel, "/processos-seletivos/editais", {"statusEdital": "ABERTO"})

        assert [p.period_name for p in result] == ["2025/1"]
        assert "currentPage" not in api.requests[-1].url.params
