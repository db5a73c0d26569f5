"""In-memory TTL cache for lookup results."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from .models import DetectionResult

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class CacheEntry:
    """A cached result and the monotonic instant it stops being valid."""

    result: DetectionResult
    expires_at: float


@dataclass(slots=True)
class ResultCache:
    """Thread-safe address -> result cache with per-entry expiry.

    Entries are readable only while ``now < expires_at``; expired entries are
    dropped lazily on read or by :meth:`purge_expired`.
    """

    default_ttl: float = 3600.0
    clock: Callable[[], float] = time.monotonic
    stats: Dict[str, int] = field(default_factory=lambda: {"hits": 0, "misses": 0, "stores": 0, "expired": 0})
    _entries: Dict[str, CacheEntry] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.default_ttl <= 0:
            raise ValueError(f"default_ttl must be positive, got {self.default_ttl}")

    def get(self, address: str) -> Optional[DetectionResult]:
        """Return the cached result, or None if missing or expired."""
        with self._lock:
            entry = self._entries.get(address)
            if entry is None:
                self.stats["misses"] += 1
                return None
            if self.clock() >= entry.expires_at:
                del self._entries[address]
                self.stats["expired"] += 1
                self.stats["misses"] += 1
                return None
            self.stats["hits"] += 1
            return entry.result

    def put(self, address: str, result: DetectionResult, ttl: Optional[float] = None) -> None:
        """Store ``result`` for ``ttl`` seconds (``default_ttl`` when omitted)."""
        lifetime = self.default_ttl if ttl is None else ttl
        if lifetime <= 0:
            raise ValueError(f"ttl must be positive, got {lifetime}")
        with self._lock:
            self._entries[address] = CacheEntry(result=result, expires_at=self.clock() + lifetime)
            self.stats["stores"] += 1

    def invalidate(self, address: str) -> bool:
        """Drop one address; returns True if it was present."""
        with self._lock:
            return self._entries.pop(address, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.debug("VPN result cache cleared")

    def purge_expired(self) -> int:
        """Remove every expired entry and return how many were dropped."""
        with self._lock:
            now = self.clock()
            expired = [address for address, entry in self._entries.items() if now >= entry.expires_at]
            for address in expired:
                del self._entries[address]
            self.stats["expired"] += len(expired)
            return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = ["CacheEntry", "ResultCache"]
