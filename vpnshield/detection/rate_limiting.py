"""Rate limiting and bounded HTTP access for detection providers."""

from __future__ import annotations

import json
import threading
import time
from typing import Any, Callable, Mapping, Optional

import requests

from .exceptions import (
    ProviderError,
    ProviderHTTPError,
    ProviderRateLimitedError,
    ProviderResponseError,
    ProviderTimeoutError,
)

_CHUNK_SIZE = 8192


class RateLimiter:
    """Thread-safe token bucket rate limiter for API calls.

    Lookups run on a worker pool, so the bucket never sleeps: a caller that finds
    it empty is told so immediately and the provider is skipped for that lookup.
    """

    def __init__(self, rate: float, burst: int, clock: Callable[[], float] = time.monotonic):
        """Initialize rate limiter.

        Args:
            rate: Tokens per second
            burst: Maximum burst capacity
            clock: Monotonic time source
        """
        if rate <= 0:
            raise ValueError(f"rate must be positive, got {rate}")
        self.rate = rate
        self.burst = burst
        self._clock = clock
        self.tokens: float = float(burst)
        self.last_update = clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self.last_update
        self.tokens = min(self.burst, self.tokens + elapsed * self.rate)
        self.last_update = now

    def try_acquire(self) -> bool:
        """Take one token if available and report whether it was granted."""
        with self._lock:
            self._refill()
            if self.tokens < 1:
                return False
            self.tokens -= 1
            return True

    def seconds_until_available(self) -> float:
        """Return how long until the next token is available (0.0 when one is ready)."""
        with self._lock:
            self._refill()
            if self.tokens >= 1:
                return 0.0
            return (1 - self.tokens) / self.rate


class RateLimitedSession:
    """Requests session with a token bucket and hard per-call deadlines.

    ``connect_timeout`` and ``read_timeout`` are handed to requests; ``total_timeout``
    caps the whole call including the streamed body, which requests alone cannot do.
    """

    def __init__(
        self,
        rate_limit: float = 1.0,
        burst: int = 2,
        connect_timeout: float = 5.0,
        read_timeout: float = 10.0,
        total_timeout: float = 15.0,
    ):
        """Initialize rate-limited session.

        Args:
            rate_limit: Requests per second
            burst: Maximum burst capacity
            connect_timeout: Socket connect timeout in seconds
            read_timeout: Socket read timeout in seconds
            total_timeout: Ceiling on the complete call in seconds
        """
        self.session = requests.Session()
        self.session.headers["Accept"] = "application/json"
        self.rate_limiter = RateLimiter(rate_limit, burst)
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.total_timeout = total_timeout

    def fetch_json(
        self,
        provider: str,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Any]:
        """GET ``url`` and decode its JSON body.

        Returns:
            Decoded JSON, or None when the service has no record (HTTP 404)

        Raises:
            ProviderTimeoutError: If any timeout or the total deadline is exceeded
            ProviderHTTPError: On any other non-2xx status
            ProviderResponseError: If the body is not valid JSON
            ProviderError: On any other transport failure
            ProviderRateLimitedError: If the local token bucket is empty
        """
        if not self.rate_limiter.try_acquire():
            raise ProviderRateLimitedError(provider, self.rate_limiter.seconds_until_available())

        started = time.monotonic()
        try:
            response = self.session.get(
                url,
                headers=dict(headers) if headers else None,
                params=dict(params) if params else None,
                timeout=(self.connect_timeout, self.read_timeout),
                stream=True,
            )
        except requests.Timeout as exc:
            raise ProviderTimeoutError(provider, f"request timed out: {exc}") from exc
        except requests.RequestException as exc:
            raise ProviderError(provider, f"request failed: {exc}") from exc

        try:
            if response.status_code == 404:
                return None
            if not 200 <= response.status_code < 300:
                raise ProviderHTTPError(provider, response.status_code)
            body = self._read_body(provider, response, started)
        finally:
            response.close()

        try:
            return json.loads(body)
        except ValueError as exc:
            raise ProviderResponseError(provider, f"invalid JSON body: {exc}") from exc

    def _read_body(self, provider: str, response: requests.Response, started: float) -> bytes:
        chunks: list[bytes] = []
        try:
            for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                if time.monotonic() - started > self.total_timeout:
                    raise ProviderTimeoutError(provider, f"response exceeded {self.total_timeout:.1f}s deadline")
                if chunk:
                    chunks.append(chunk)
        except requests.Timeout as exc:
            raise ProviderTimeoutError(provider, f"read timed out: {exc}") from exc
        except requests.RequestException as exc:
            raise ProviderError(provider, f"read failed: {exc}") from exc
        return b"".join(chunks)

    def close(self) -> None:
        """Close the underlying session."""
        self.session.close()


# Free-tier limits from each service's documentation
SERVICE_RATE_LIMITS = {
    "proxycheck": {"rate": 1.0, "burst": 2},  # 1000/day with a key, 100/day without
    "ip-api": {"rate": 0.75, "burst": 3},  # 45 requests/minute
    "vpnapi": {"rate": 1.0, "burst": 2},  # 1000/day free tier
    "iphub": {"rate": 1.0, "burst": 2},  # 1000/day free tier
    "iphunter": {"rate": 0.5, "burst": 1},
    "ipqualityscore": {"rate": 1.0, "burst": 2},
}


def get_service_rate_limit(service: str) -> tuple[float, int]:
    """Get rate limit configuration for a service."""
    config = SERVICE_RATE_LIMITS.get(service, {"rate": 1.0, "burst": 2})
    return config["rate"], int(config["burst"])


__all__ = ["RateLimitedSession", "RateLimiter", "SERVICE_RATE_LIMITS", "get_service_rate_limit"]
