"""Error types raised by detection providers.

A provider signals *absence* (nothing to say, e.g. no API key configured) by
returning ``None``. Anything raised as a :class:`ProviderError` is a *failure*
and puts the provider into cool-down. :class:`ProviderRateLimitedError` means the
local token bucket was empty and no request was sent; the provider is skipped
for that lookup only.
"""

from __future__ import annotations

from typing import Optional


class VPNShieldError(Exception):
    """Base class for vpnshield errors."""


class ProviderError(VPNShieldError):
    """A provider lookup failed (transport, timeout or malformed response)."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ProviderTimeoutError(ProviderError):
    """The connect, read or total-call deadline was exceeded."""


class ProviderHTTPError(ProviderError):
    """The provider answered with a non-success HTTP status."""

    def __init__(self, provider: str, status_code: int, message: Optional[str] = None) -> None:
        super().__init__(provider, message or f"HTTP {status_code}")
        self.status_code = status_code


class ProviderResponseError(ProviderError):
    """The response body could not be parsed into a result."""


class ProviderRateLimitedError(VPNShieldError):
    """The local rate limiter had no token for this provider."""

    def __init__(self, provider: str, retry_after: float) -> None:
        super().__init__(f"{provider}: local rate limit reached, next slot in {retry_after:.1f}s")
        self.provider = provider
        self.retry_after = retry_after


__all__ = [
    "ProviderError",
    "ProviderHTTPError",
    "ProviderRateLimitedError",
    "ProviderResponseError",
    "ProviderTimeoutError",
    "VPNShieldError",
]
