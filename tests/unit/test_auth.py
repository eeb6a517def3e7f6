"""Tests for the bearer token cache."""

import threading
import time
from unittest.mock import Mock

import httpx
import pytest

from enrollsync.lib.auth import CREDENTIAL_HEADER, Token, TokenCache
from enrollsync.lib.client import ApiClient
from enrollsync.lib.errors import AuthError, Cancelled, TerminalHTTPError, TransientError


def _client_returning(*responses):
    client = Mock(spec=ApiClient)
    client.request.side_effect = list(responses)
    return client


def _token_response(value):
    return httpx.Response(200, json={"token": value})


class TestToken:
    """Tests for the Token value object."""

    def test_validity_window(self):
        token = Token(value="abc", expires_at=100.0)
        assert token.is_valid(99.9)
        assert not token.is_valid(100.0)

    def test_empty_value_is_never_valid(self):
        assert not Token(value="", expires_at=100.0).is_valid(0.0)

    def test_repr_hides_value(self):
        assert "abc" not in repr(Token(value="abc", expires_at=1.0))


class TestTokenCache:
    """Tests for TokenCache reuse and refresh."""

    def test_exchange_sends_static_credential(self, cancel, clock):
        client = _client_returning(_token_response("t1"))
        cache = TokenCache(client, auth_endpoint="/auth/token", credential="secret", clock=clock)

        token = cache.get_token(cancel)

        assert token.value == "t1"
        method, path, passed_cancel = client.request.call_args.args
        assert (method, path, passed_cancel) == ("POST", "/auth/token", cancel)
        assert client.request.call_args.kwargs["headers"] == {CREDENTIAL_HEADER: "secret"}

    def test_token_reused_within_validity(self, cancel, clock):
        client = _client_returning(_token_response("t1"))
        cache = TokenCache(
            client, auth_endpoint="/auth/token", credential="secret", validity_seconds=900, clock=clock
        )

        values = set()
        for _ in range(25):
            values.add(cache.get_token(cancel).value)
            clock.advance(10)

        assert values == {"t1"}
        assert cache.exchange_count == 1

    def test_refresh_after_expiry(self, cancel, clock):
        client = _client_returning(_token_response("t1"), _token_response("t2"))
        cache = TokenCache(
            client, auth_endpoint="/auth/token", credential="secret", validity_seconds=900, clock=clock
        )

        assert cache.get_token(cancel).value == "t1"
        clock.advance(900)
        assert cache.get_token(cancel).value == "t2"
        assert cache.get_token(cancel).value == "t2"
        assert cache.exchange_count == 2

    def test_invalidate_forces_new_exchange(self, cancel, clock):
        client = _client_returning(_token_response("t1"), _token_response("t2"))
        cache = TokenCache(client, auth_endpoint="/auth/token", credential="secret", clock=clock)

        cache.get_token(cancel)
        cache.invalidate()

        assert cache.get_token(cancel).value == "t2"

    def test_concurrent_callers_share_one_exchange(self, cancel):
        client = Mock(spec=ApiClient)

        def slow_exchange(*args, **kwargs):
            time.sleep(0.05)
            return _token_response("shared")

        client.request.side_effect = slow_exchange
        cache = TokenCache(client, auth_endpoint="/auth/token", credential="secret")

        results = []
        lock = threading.Lock()

        def worker():
            value = cache.get_token(cancel).value
            with lock:
                results.append(value)

        threads = [threading.Thread(target=worker) for _ in range(16)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results == ["shared"] * 16
        assert client.request.call_count == 1


class TestTokenCacheFailures:
    """Tests for failed exchanges."""

    def test_empty_token_is_auth_error(self, cancel):
        cache = TokenCache(_client_returning(_token_response("")), auth_endpoint="/a", credential="c")
        with pytest.raises(AuthError, match="empty"):
            cache.get_token(cancel)

    def test_unparseable_response_is_auth_error(self, cancel):
        client = _client_returning(httpx.Response(200, text="<html>"))
        cache = TokenCache(client, auth_endpoint="/a", credential="c")
        with pytest.raises(AuthError, match="parse"):
            cache.get_token(cancel)

    def test_http_failure_is_wrapped(self, cancel):
        failure = TerminalHTTPError("POST /a failed with HTTP 401", status_code=401)
        client = Mock(spec=ApiClient)
        client.request.side_effect = failure
        cache = TokenCache(client, auth_endpoint="/a", credential="c")

        with pytest.raises(AuthError) as exc_info:
            cache.get_token(cancel)

        assert exc_info.value.cause is failure
        assert exc_info.value.details["cause_type"] == "TerminalHTTPError"
        assert exc_info.value.suggestion

    def test_exhausted_retries_are_wrapped(self, cancel):
        client = Mock(spec=ApiClient)
        client.request.side_effect = TransientError("503", status_code=503)
        cache = TokenCache(client, auth_endpoint="/a", credential="c")
        with pytest.raises(AuthError):
            cache.get_token(cancel)

    def test_cancellation_propagates_unchanged(self, cancel):
        client = Mock(spec=ApiClient)
        client.request.side_effect = Cancelled("deadline")
        cache = TokenCache(client, auth_endpoint="/a", credential="c")

        with pytest.raises(Cancelled):
            cache.get_token(cancel)

    def test_failed_exchange_leaves_no_token(self, cancel):
        client = _client_returning(_token_response(""), _token_response("t2"))
        cache = TokenCache(client, auth_endpoint="/a", credential="c")

        with pytest.raises(AuthError):
            cache.get_token(cancel)
        assert cache.get_token(cancel).value == "t2"
