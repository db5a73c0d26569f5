"""VPN, proxy, hosting and Tor detection."""

from __future__ import annotations

from .exceptions import (
    ProviderError,
    ProviderHTTPError,
    ProviderRateLimitedError,
    ProviderResponseError,
    ProviderTimeoutError,
    VPNShieldError,
)
from .models import (
    AddressHistoryEntry,
    DetectionRecord,
    DetectionResult,
    DetectionStats,
    ProviderStat,
    VPNAction,
)

__all__ = [
    "AddressHistoryEntry",
    "DetectionRecord",
    "DetectionResult",
    "DetectionStats",
    "DetectionStore",
    "ProviderError",
    "ProviderHTTPError",
    "ProviderRateLimitedError",
    "ProviderResponseError",
    "ProviderRotator",
    "ProviderStat",
    "ProviderTimeoutError",
    "ResultCache",
    "VPNAction",
    "VPNManager",
    "VPNShieldError",
    "Whitelist",
]


def __getattr__(name: str) -> type:
    if name == "VPNManager":
        from .manager import VPNManager as manager

        return manager
    if name == "DetectionStore":
        from .store import DetectionStore as store

        return store
    if name == "ProviderRotator":
        from .rotator import ProviderRotator as rotator

        return rotator
    if name == "ResultCache":
        from .cache import ResultCache as cache

        return cache
    if name == "Whitelist":
        from .whitelist import Whitelist as whitelist

        return whitelist
    raise AttributeError(f"module 'vpnshield.detection' has no attribute {name!r}")
