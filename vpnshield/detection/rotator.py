"""Provider rotation with a per-provider cool-down circuit breaker.

Each provider is either AVAILABLE or COOLING. Any failure puts it into COOLING
for a fixed period; it becomes AVAILABLE again on its own once the period has
elapsed. There is no half-open probing and cool-downs never stack: only the
most recent failure decides ``cool_down_until``.

The rotation pointer is shared by every caller. Each attempt advances it, so
concurrent lookups start on different providers and spread load across them.
The pointer and the cool-down table are guarded by one lock which is never held
across a network call.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Sequence

from vpnshield.telemetry import start_span

from .exceptions import ProviderError, ProviderRateLimitedError
from .models import DetectionResult

logger = logging.getLogger(__name__)


class Provider(Protocol):
    """Anything the rotator can query."""

    name: str

    def check(self, address: str) -> Optional[DetectionResult]: ...


@dataclass(slots=True)
class ProviderState:
    """Cool-down bookkeeping for one provider, created on its first failure."""

    name: str
    cool_down_until: float = 0.0
    failures: int = 0
    last_error: Optional[str] = None

    def is_cooling(self, now: float) -> bool:
        return now < self.cool_down_until


@dataclass(slots=True)
class RotatorStats:
    """Counters for rotator activity."""

    queries: int = 0
    successes: int = 0
    absences: int = 0
    failures: int = 0
    skipped_cooling: int = 0
    throttled: int = 0
    exhausted: int = 0


class ProviderRotator:
    """Query providers in rotation, skipping those that recently failed.

    Example:
        >>> rotator = ProviderRotator(create_providers(["proxycheck", "ip-api"]), cooldown_seconds=300)
        >>> result = rotator.query("203.0.113.7")  # None when every provider is out
    """

    def __init__(
        self,
        providers: Sequence[Provider],
        cooldown_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the rotator.

        Args:
            providers: Ordered providers; the order is the initial rotation order
            cooldown_seconds: Fixed time a failed provider is skipped
            clock: Monotonic time source in seconds
        """
        if not providers:
            raise ValueError("ProviderRotator requires at least one provider")
        self.providers: tuple[Provider, ...] = tuple(providers)
        self.cooldown_seconds = float(cooldown_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._pointer = 0
        self._states: dict[str, ProviderState] = {}
        self.stats = RotatorStats()

    def __len__(self) -> int:
        return len(self.providers)

    def _next_candidate(self) -> tuple[Provider, bool]:
        """Take the provider under the pointer, advance it, and report whether it is cooling."""
        with self._lock:
            provider = self.providers[self._pointer]
            self._pointer = (self._pointer + 1) % len(self.providers)
            state = self._states.get(provider.name)
            cooling = state is not None and state.is_cooling(self._clock())
            if cooling:
                self.stats.skipped_cooling += 1
            return provider, cooling

    def mark_failed(self, provider_name: str, error: Optional[BaseException] = None) -> None:
        """Put a provider into cool-down, replacing any earlier cool-down."""
        with self._lock:
            state = self._states.get(provider_name)
            if state is None:
                state = ProviderState(name=provider_name)
                self._states[provider_name] = state
            state.cool_down_until = self._clock() + self.cooldown_seconds
            state.failures += 1
            state.last_error = str(error) if error is not None else None
            self.stats.failures += 1

    def is_cooling(self, provider_name: str) -> bool:
        with self._lock:
            state = self._states.get(provider_name)
            return state is not None and state.is_cooling(self._clock())

    def cooling_remaining(self, provider_name: str) -> float:
        """Seconds until ``provider_name`` is available again (0.0 if it already is)."""
        with self._lock:
            state = self._states.get(provider_name)
            if state is None:
                return 0.0
            return max(0.0, state.cool_down_until - self._clock())

    def states(self) -> dict[str, float]:
        """Snapshot of remaining cool-down seconds for every provider."""
        with self._lock:
            now = self._clock()
            return {
                provider.name: max(0.0, self._states[provider.name].cool_down_until - now)
                if provider.name in self._states
                else 0.0
                for provider in self.providers
            }

    def reset(self) -> None:
        """Clear all cool-downs and rewind the pointer."""
        with self._lock:
            self._states.clear()
            self._pointer = 0

    def query(self, address: str) -> Optional[DetectionResult]:
        """Ask providers in rotation until one answers.

        Every provider gets at most one attempt per call; a cooling provider still
        uses up its attempt. Failures put the provider into cool-down and the next
        one is tried; absences and local rate-limit misses simply move on.

        Returns:
            The first result obtained, or None when all attempts are exhausted
        """
        with self._lock:
            self.stats.queries += 1

        for _ in range(len(self.providers)):
            provider, cooling = self._next_candidate()
            if cooling:
                logger.debug(f"Skipping {provider.name} for {address}: cooling down")
                continue

            try:
                with start_span("vpnshield.provider.check", {"provider": provider.name}):
                    result = provider.check(address)
            except ProviderRateLimitedError as exc:
                logger.debug(f"Skipping {provider.name} for {address}: {exc}")
                with self._lock:
                    self.stats.throttled += 1
                continue
            except ProviderError as exc:
                logger.warning(f"VPN provider {provider.name} failed for {address}: {exc}")
                self.mark_failed(provider.name, exc)
                continue
            except Exception as exc:
                logger.warning(f"VPN provider {provider.name} raised unexpectedly for {address}: {exc}", exc_info=True)
                self.mark_failed(provider.name, exc)
                continue

            if result is not None:
                logger.debug(f"VPN check for {address} answered by {provider.name}")
                with self._lock:
                    self.stats.successes += 1
                return result

            with self._lock:
                self.stats.absences += 1

        logger.warning(f"All VPN providers failed or unavailable for {address}")
        with self._lock:
            self.stats.exhausted += 1
        return None


__all__ = ["Provider", "ProviderRotator", "ProviderState", "RotatorStats"]
