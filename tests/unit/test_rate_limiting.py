"""Tests for rate limiting and bounded HTTP access."""

from __future__ import annotations

from typing import Iterable, Iterator
from unittest.mock import Mock, patch

import pytest
import requests

from vpnshield.detection.exceptions import (
    ProviderError,
    ProviderHTTPError,
    ProviderRateLimitedError,
    ProviderResponseError,
    ProviderTimeoutError,
)
from vpnshield.detection.rate_limiting import (
    SERVICE_RATE_LIMITS,
    RateLimitedSession,
    RateLimiter,
    get_service_rate_limit,
)
from tests.fixtures.vpn_fixtures import FakeClock


def _response(status_code: int = 200, chunks: Iterable[bytes] = (b"{}",)) -> Mock:
    response = Mock()
    response.status_code = status_code
    response.iter_content.return_value = iter(list(chunks))
    return response


class TestRateLimiter:
    """Test the non-blocking token bucket."""

    def test_initial_burst_available(self) -> None:
        """A fresh limiter grants its whole burst."""
        limiter = RateLimiter(rate=1.0, burst=3, clock=FakeClock())

        assert [limiter.try_acquire() for _ in range(4)] == [True, True, True, False]

    def test_tokens_refill_over_time(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter(rate=2.0, burst=1, clock=clock)

        assert limiter.try_acquire() is True
        assert limiter.try_acquire() is False
        assert limiter.seconds_until_available() == pytest.approx(0.5)

        clock.advance(0.5)

        assert limiter.seconds_until_available() == 0.0
        assert limiter.try_acquire() is True

    def test_tokens_capped_at_burst(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter(rate=10.0, burst=2, clock=clock)
        clock.advance(60)

        assert [limiter.try_acquire() for _ in range(3)] == [True, True, False]

    def test_rate_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            RateLimiter(rate=0, burst=1)


class TestRateLimitedSession:
    """Test HTTP status and body handling."""

    def _session(self, **kwargs: float) -> RateLimitedSession:
        return RateLimitedSession(rate_limit=100.0, burst=100, **kwargs)

    def test_success_returns_decoded_json(self) -> None:
        session = self._session(connect_timeout=2.0, read_timeout=3.0)
        response = _response(chunks=[b'{"status": ', b'"success"}'])

        with patch.object(session.session, "get", return_value=response) as mock_get:
            payload = session.fetch_json("ip-api.com", "http://ip-api.com/json/203.0.113.7", params={"fields": "a"})

        assert payload == {"status": "success"}
        mock_get.assert_called_once_with(
            "http://ip-api.com/json/203.0.113.7",
            headers=None,
            params={"fields": "a"},
            timeout=(2.0, 3.0),
            stream=True,
        )
        response.close.assert_called_once()

    def test_not_found_is_absence(self) -> None:
        """HTTP 404 means the service has no record: None, not an error."""
        session = self._session()
        response = _response(status_code=404)

        with patch.object(session.session, "get", return_value=response):
            assert session.fetch_json("vpnapi.io", "https://vpnapi.io/api/203.0.113.7") is None
        response.close.assert_called_once()

    @pytest.mark.parametrize("status", [400, 401, 403, 429, 500, 503])
    def test_error_status_raises(self, status: int) -> None:
        session = self._session()

        with patch.object(session.session, "get", return_value=_response(status_code=status)):
            with pytest.raises(ProviderHTTPError) as excinfo:
                session.fetch_json("iphub.info", "https://v2.api.iphub.info/ip/203.0.113.7")

        assert excinfo.value.status_code == status
        assert excinfo.value.provider == "iphub.info"

    def test_timeout_raises_timeout_error(self) -> None:
        session = self._session()

        with patch.object(session.session, "get", side_effect=requests.Timeout("connect timed out")):
            with pytest.raises(ProviderTimeoutError):
                session.fetch_json("proxycheck.io", "https://proxycheck.io/v2/203.0.113.7")

    def test_connection_error_raises_provider_error(self) -> None:
        session = self._session()

        with patch.object(session.session, "get", side_effect=requests.ConnectionError("refused")):
            with pytest.raises(ProviderError) as excinfo:
                session.fetch_json("proxycheck.io", "https://proxycheck.io/v2/203.0.113.7")

        assert not isinstance(excinfo.value, ProviderTimeoutError)

    def test_invalid_json_raises_response_error(self) -> None:
        session = self._session()

        with patch.object(session.session, "get", return_value=_response(chunks=[b"<html>busy</html>"])):
            with pytest.raises(ProviderResponseError):
                session.fetch_json("ip-api.com", "http://ip-api.com/json/203.0.113.7")

    def test_total_deadline_enforced_while_streaming(self) -> None:
        """A body trickling in past the total deadline is abandoned."""
        session = self._session(total_timeout=1.0)
        response = _response()

        def slow_chunks(chunk_size: int) -> Iterator[bytes]:
            yield b'{"a":'
            yield b"1}"

        response.iter_content.side_effect = slow_chunks
        ticks = iter([100.0, 100.2, 101.5])

        with patch.object(session.session, "get", return_value=response), patch(
            "vpnshield.detection.rate_limiting.time.monotonic", side_effect=lambda: next(ticks, 200.0)
        ):
            with pytest.raises(ProviderTimeoutError):
                session.fetch_json("vpnapi.io", "https://vpnapi.io/api/203.0.113.7")

        response.close.assert_called_once()

    def test_local_rate_limit_is_not_a_provider_failure(self) -> None:
        """An exhausted bucket raises a throttle signal instead of blocking the worker."""
        session = RateLimitedSession(rate_limit=0.001, burst=1)

        with patch.object(session.session, "get", return_value=_response()) as mock_get:
            session.fetch_json("iphunter.info", "https://www.iphunter.info:8082/v1/ip/203.0.113.7")
            with pytest.raises(ProviderRateLimitedError, match="rate limit") as excinfo:
                session.fetch_json("iphunter.info", "https://www.iphunter.info:8082/v1/ip/203.0.113.7")

        assert mock_get.call_count == 1
        assert not isinstance(excinfo.value, ProviderError)
        assert excinfo.value.provider == "iphunter.info"
        assert excinfo.value.retry_after > 0

    def test_close_closes_session(self) -> None:
        session = self._session()

        with patch.object(session.session, "close") as mock_close:
            session.close()

        mock_close.assert_called_once()


class TestServiceRateLimits:
    """Test service rate limit configuration."""

    def test_every_provider_configured(self) -> None:
        for name in ("proxycheck", "ip-api", "vpnapi", "iphub", "iphunter", "ipqualityscore"):
            assert name in SERVICE_RATE_LIMITS

    def test_ip_api_limit(self) -> None:
        assert get_service_rate_limit("ip-api") == (0.75, 3)

    def test_unknown_service_default(self) -> None:
        assert get_service_rate_limit("unknown") == (1.0, 2)
