"""Connection check orchestration.

``VPNManager.check_address`` runs the lookup pipeline:

0. Input that does not parse as an IP address: ``unknown`` result, nothing cached
1. Whitelisted or private address: clean result, nothing else touched
2. Fresh cache entry: returned as is
3. Best-effort history hint from the store (fire and forget)
4. Provider rotation on the worker pool
5. Country allow-list override
6. No answer from any provider: the fail-open ``unknown`` result
7. Cache write, then the result resolves the caller's future

Steps 0 to 2 only touch memory and resolve immediately on the calling thread;
everything else runs on a bounded :class:`~concurrent.futures.ThreadPoolExecutor`.
Continuations attached by callers run on whichever thread completes the future.

Concurrent checks for the same address are not deduplicated: both may miss the
cache and query providers, and the last cache write wins.
"""

from __future__ import annotations

import ipaddress
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional, Sequence, TypeVar

from vpnshield.settings import DetectionSettings
from vpnshield.telemetry import start_span

from .cache import ResultCache
from .factory import create_providers
from .models import (
    AddressHistoryEntry,
    DetectionRecord,
    DetectionResult,
    DetectionStats,
    VPNAction,
    WHITELISTED_SOURCE,
)
from .rotator import Provider, ProviderRotator
from .store import DetectionStore
from .whitelist import Whitelist

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _completed(value: T) -> Future[T]:
    future: Future[T] = Future()
    future.set_result(value)
    return future


class VPNManager:
    """Entry point for collaborators: checks, logging, history and reporting.

    Every public operation returns immediately; the ones that need I/O hand back a
    :class:`~concurrent.futures.Future`. ``check_address`` futures always resolve to
    a :class:`DetectionResult` and never carry an exception.

    Example:
        >>> settings = DetectionSettings.from_sources({"providers": ["proxycheck", "ip-api"]})
        >>> store = DetectionStore.from_settings(load_database_settings())
        >>> with VPNManager(settings, store) as manager:
        ...     result = manager.check_address("203.0.113.7").result()
        ...     if result.dangerous:
        ...         manager.log_detection(result, subject_id="069a79f4", subject_name="Notch",
        ...                               action=manager.effective_action)
    """

    def __init__(
        self,
        settings: DetectionSettings,
        store: DetectionStore,
        providers: Optional[Sequence[Provider]] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        """Wire up cache, whitelist, rotator and worker pool.

        Args:
            settings: Detection configuration
            store: Persistence for detections and address history
            providers: Explicit providers; built from ``settings.providers`` when omitted
            clock: Monotonic time source shared by the cache and the rotator
            executor: Worker pool; one sized ``settings.max_workers`` is created when omitted
        """
        self.settings = settings
        self.store = store
        if providers is None:
            providers = create_providers(
                settings.providers,
                settings.api_keys,
                connect_timeout=settings.connect_timeout,
                read_timeout=settings.read_timeout,
                total_timeout=settings.total_timeout,
            )
        self.rotator = ProviderRotator(providers, cooldown_seconds=settings.provider_cooldown_seconds, clock=clock)
        self.cache = ResultCache(default_ttl=settings.cache_ttl_seconds, clock=clock)
        self.whitelist = Whitelist(settings.whitelist_ips, settings.whitelist_countries)

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=settings.max_workers, thread_name_prefix="vpnshield"
        )
        self._closed = False

        self._runtime_enabled = True
        self._alerts_enabled = True
        self._runtime_action: Optional[VPNAction] = None

        self._stats_lock = threading.Lock()
        self.stats: Dict[str, int] = {
            "checks": 0,
            "whitelisted": 0,
            "cache_hits": 0,
            "lookups": 0,
            "country_overrides": 0,
            "unknown": 0,
            "errors": 0,
            "invalid": 0,
        }

    # ------------------------------------------------------------- checking

    def _count(self, key: str) -> None:
        with self._stats_lock:
            self.stats[key] += 1

    def check_address(self, address: str) -> Future[DetectionResult]:
        """Classify ``address`` without blocking the caller."""
        address = address.strip()
        self._count("checks")

        try:
            ipaddress.ip_address(address)
        except ValueError:
            self._count("invalid")
            logger.warning(f"VPN check skipped for unparsable address {address!r}")
            return _completed(DetectionResult.unknown(address))

        if self.whitelist.is_whitelisted(address):
            self._count("whitelisted")
            return _completed(DetectionResult.clean(address, WHITELISTED_SOURCE))

        cached = self.cache.get(address)
        if cached is not None:
            self._count("cache_hits")
            logger.debug(f"VPN check for {address} returned from cache")
            return _completed(cached)

        try:
            return self._executor.submit(self._lookup, address)
        except RuntimeError:
            logger.warning(f"VPN manager is shut down, returning unknown result for {address}")
            return _completed(DetectionResult.unknown(address))

    def _lookup(self, address: str) -> DetectionResult:
        self._count("lookups")
        self._submit_history_hint(address)

        result: Optional[DetectionResult]
        try:
            with start_span("vpnshield.check_address", {"address": address}):
                result = self.rotator.query(address)
        except Exception as exc:
            logger.error(f"VPN lookup for {address} failed unexpectedly: {exc}", exc_info=True)
            self._count("errors")
            result = None

        if result is None:
            self._count("unknown")
            result = DetectionResult.unknown(address)
        else:
            overridden = self.whitelist.apply_country_override(result)
            if overridden is not result:
                self._count("country_overrides")
            result = overridden

        self.cache.put(address, result)
        return result

    def _submit_history_hint(self, address: str) -> None:
        """Ask the store whether the address was flagged before, without waiting."""

        def _report(future: Future[bool]) -> None:
            try:
                if future.result():
                    logger.debug(f"Address {address} is already recorded as dangerous")
            except Exception as exc:
                logger.debug(f"History hint for {address} unavailable: {exc}")

        try:
            self._executor.submit(self.store.is_known_dangerous, address).add_done_callback(_report)
        except RuntimeError as exc:
            logger.debug(f"History hint for {address} skipped: {exc}")

    # ---------------------------------------------------------- persistence

    def _submit(self, fn: Callable[..., T], *args: Any, default: T) -> Future[T]:
        try:
            return self._executor.submit(fn, *args)
        except RuntimeError:
            logger.warning(f"VPN manager is shut down, skipping {getattr(fn, '__name__', fn)}")
            return _completed(default)

    def log_detection(
        self,
        result: DetectionResult,
        subject_id: Optional[str] = None,
        subject_name: Optional[str] = None,
        action: VPNAction | str | None = None,
    ) -> Future[bool]:
        """Persist a result and, for known subjects, record the address in their history.

        The history entry is flagged as VPN when the result is dangerous.
        """

        def _write() -> bool:
            logged = self.store.log_detection(result, subject_id, subject_name, action)
            if subject_id is None:
                return logged
            tracked = self.store.track_address(subject_id, result.address, result.dangerous, subject_name)
            return logged and tracked

        return self._submit(_write, default=False)

    def track_address(
        self,
        subject_id: str,
        address: str,
        is_vpn: bool,
        subject_name: Optional[str] = None,
    ) -> Future[bool]:
        return self._submit(self.store.track_address, subject_id, address, is_vpn, subject_name, default=False)

    def get_likely_real_address(self, subject_id: str) -> Future[Optional[str]]:
        return self._submit(self.store.get_likely_real_address, subject_id, default=None)

    def get_subject_addresses(self, subject_id: str) -> Future[list[AddressHistoryEntry]]:
        return self._submit(self.store.get_subject_addresses, subject_id, default=[])

    def get_stats(self) -> Future[DetectionStats]:
        return self._submit(self.store.get_stats, default=DetectionStats())

    def get_recent_detections(self, limit: int = 10) -> Future[list[DetectionRecord]]:
        return self._submit(self.store.get_recent_detections, limit, default=[])

    # ------------------------------------------------------------ whitelist

    def add_to_whitelist(self, address: str) -> None:
        """Exempt an address and drop any cached result for it."""
        self.whitelist.add(address)
        self.cache.invalidate(address.strip())

    def remove_from_whitelist(self, address: str) -> bool:
        return self.whitelist.remove(address)

    def whitelisted_addresses(self) -> set[str]:
        return self.whitelist.addresses()

    def clear_cache(self) -> None:
        self.cache.clear()

    # -------------------------------------------------------- runtime state

    def is_enabled(self) -> bool:
        """Configured switch combined with the runtime toggle."""
        return self._runtime_enabled and self.settings.enabled

    def set_enabled(self, enabled: bool) -> None:
        self._runtime_enabled = enabled

    @property
    def alerts_enabled(self) -> bool:
        return self._alerts_enabled and self.settings.alerts_enabled

    def set_alerts_enabled(self, enabled: bool) -> None:
        self._alerts_enabled = enabled

    @property
    def effective_action(self) -> VPNAction:
        """Runtime override if one was set, otherwise the configured action."""
        return self._runtime_action if self._runtime_action is not None else self.settings.action

    def set_action(self, action: VPNAction | str | None) -> None:
        """Override the configured action until restart; None clears the override."""
        self._runtime_action = None if action is None else VPNAction.parse(action)

    @property
    def cache_size(self) -> int:
        return len(self.cache)

    @property
    def provider_count(self) -> int:
        return len(self.rotator)

    def provider_states(self) -> dict[str, float]:
        """Remaining cool-down seconds per provider (0.0 when available)."""
        return self.rotator.states()

    def get_local_stats(self) -> dict[str, int]:
        with self._stats_lock:
            return dict(self.stats)

    # ------------------------------------------------------------ lifecycle

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work, drain pending writes and release resources."""
        if self._closed:
            return
        self._closed = True
        if self._owns_executor:
            self._executor.shutdown(wait=wait)
        for provider in self.rotator.providers:
            close = getattr(provider, "close", None)
            if callable(close):
                close()
        self.cache.clear()
        self.store.close()
        logger.info("VPN manager shut down")

    def __enter__(self) -> VPNManager:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.shutdown()


__all__ = ["VPNManager"]
