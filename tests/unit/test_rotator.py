"""Tests for provider rotation and the cool-down circuit breaker."""

from __future__ import annotations

from unittest.mock import Mock, patch

import pytest

from vpnshield.detection.exceptions import ProviderHTTPError, ProviderRateLimitedError, ProviderTimeoutError
from vpnshield.detection.providers import ProxyCheckProvider
from vpnshield.detection.models import DetectionResult
from vpnshield.detection.rotator import ProviderRotator

from tests.fixtures.vpn_fixtures import FakeClock, StubProvider

ADDRESS = "203.0.113.7"


def _vpn(source: str) -> DetectionResult:
    return DetectionResult(address=ADDRESS, is_vpn=True, source=source)


class TestProviderRotatorBasics:
    """Test construction and rotation order."""

    def test_requires_providers(self) -> None:
        with pytest.raises(ValueError):
            ProviderRotator([])

    def test_first_answer_wins(self) -> None:
        a = StubProvider("a", [_vpn("a")])
        b = StubProvider("b", [_vpn("b")])
        rotator = ProviderRotator([a, b], clock=FakeClock())

        result = rotator.query(ADDRESS)

        assert result is not None and result.source == "a"
        assert b.calls == []

    def test_pointer_shared_across_calls(self) -> None:
        """Successive queries start on successive providers."""
        a = StubProvider("a", [_vpn("a")])
        b = StubProvider("b", [_vpn("b")])
        c = StubProvider("c", [_vpn("c")])
        rotator = ProviderRotator([a, b, c], clock=FakeClock())

        sources = [rotator.query(ADDRESS).source for _ in range(4)]  # type: ignore[union-attr]

        assert sources == ["a", "b", "c", "a"]

    def test_absence_moves_on_without_cooldown(self) -> None:
        a = StubProvider("a", [None])
        b = StubProvider("b", [_vpn("b")])
        rotator = ProviderRotator([a, b], clock=FakeClock())

        result = rotator.query(ADDRESS)

        assert result is not None and result.source == "b"
        assert not rotator.is_cooling("a")
        assert rotator.stats.absences == 1


class TestProviderRotatorFailover:
    """Test failure handling and cool-down."""

    def test_failure_fails_over_and_cools(self, fake_clock: FakeClock) -> None:
        """Given A fails and B answers, the result comes from B and A cools down."""
        a = StubProvider("a", [ProviderTimeoutError("a", "timed out")])
        b = StubProvider("b", [_vpn("b")])
        rotator = ProviderRotator([a, b], cooldown_seconds=300, clock=fake_clock)

        result = rotator.query(ADDRESS)

        assert result is not None and result.is_vpn and result.source == "b"
        assert rotator.is_cooling("a")
        assert rotator.cooling_remaining("a") == pytest.approx(300.0)
        assert not rotator.is_cooling("b")

    def test_cooldown_lasts_exactly_cooldown_seconds(self, fake_clock: FakeClock) -> None:
        a = StubProvider("a", [ProviderHTTPError("a", 500), _vpn("a")])
        b = StubProvider("b", [None])
        rotator = ProviderRotator([a, b], cooldown_seconds=300, clock=fake_clock)

        assert rotator.query(ADDRESS) is None
        assert len(a.calls) == 1

        fake_clock.advance(299)
        assert rotator.is_cooling("a")
        rotator.query(ADDRESS)
        assert len(a.calls) == 1

        fake_clock.advance(1)
        assert not rotator.is_cooling("a")
        result = rotator.query(ADDRESS)
        assert result is not None and result.source == "a"
        assert len(a.calls) == 2

    def test_cooldowns_do_not_stack(self, fake_clock: FakeClock) -> None:
        """A second failure replaces the first cool-down instead of extending it."""
        rotator = ProviderRotator([StubProvider("a")], cooldown_seconds=300, clock=fake_clock)

        rotator.mark_failed("a")
        fake_clock.advance(100)
        rotator.mark_failed("a")

        assert rotator.cooling_remaining("a") == pytest.approx(300.0)
        fake_clock.advance(300)
        assert not rotator.is_cooling("a")

    def test_unexpected_exception_treated_as_failure(self, fake_clock: FakeClock) -> None:
        a = StubProvider("a", [RuntimeError("boom")])
        b = StubProvider("b", [_vpn("b")])
        rotator = ProviderRotator([a, b], clock=fake_clock)

        result = rotator.query(ADDRESS)

        assert result is not None and result.source == "b"
        assert rotator.is_cooling("a")

    def test_all_failing_returns_none(self, fake_clock: FakeClock) -> None:
        """Every provider gets one attempt, then the query gives up."""
        providers = [StubProvider(name, [ProviderHTTPError(name, 503)]) for name in ("a", "b", "c")]
        rotator = ProviderRotator(providers, clock=fake_clock)

        assert rotator.query(ADDRESS) is None
        assert [len(p.calls) for p in providers] == [1, 1, 1]
        assert rotator.stats.exhausted == 1

    def test_all_cooling_makes_no_calls(self, fake_clock: FakeClock) -> None:
        providers = [StubProvider(name, [_vpn(name)]) for name in ("a", "b")]
        rotator = ProviderRotator(providers, clock=fake_clock)
        rotator.mark_failed("a")
        rotator.mark_failed("b")

        assert rotator.query(ADDRESS) is None
        assert all(p.calls == [] for p in providers)
        assert rotator.stats.skipped_cooling == 2

    def test_zero_cooldown_never_skips(self, fake_clock: FakeClock) -> None:
        a = StubProvider("a", [ProviderHTTPError("a", 500), _vpn("a")])
        rotator = ProviderRotator([a], cooldown_seconds=0, clock=fake_clock)

        assert rotator.query(ADDRESS) is None
        assert rotator.query(ADDRESS) is not None


class TestProviderRotatorThrottling:
    """Test local rate-limit misses."""

    def test_throttled_provider_skipped_without_cooldown(self, fake_clock: FakeClock) -> None:
        """Given A has no token and B answers, B wins and A is tried again next time."""
        a = StubProvider("a", [ProviderRateLimitedError("a", 1.0), _vpn("a")])
        b = StubProvider("b", [_vpn("b")])
        rotator = ProviderRotator([a, b], cooldown_seconds=300, clock=fake_clock)

        result = rotator.query(ADDRESS)

        assert result is not None and result.source == "b"
        assert not rotator.is_cooling("a")
        assert rotator.cooling_remaining("a") == 0.0
        assert rotator.stats.throttled == 1
        assert rotator.stats.failures == 0

        result = rotator.query(ADDRESS)
        assert result is not None and result.source == "a"
        assert len(a.calls) == 2

    def test_empty_bucket_does_not_cool_real_provider(self, fake_clock: FakeClock) -> None:
        """Back-to-back lookups past proxycheck's burst leave it available."""
        response = Mock(status_code=200)
        response.iter_content.side_effect = lambda chunk_size: iter(
            [b'{"status": "ok", "203.0.113.7": {"proxy": "yes", "type": "VPN"}}']
        )
        provider = ProxyCheckProvider()
        rotator = ProviderRotator([provider], cooldown_seconds=300, clock=fake_clock)

        with patch.object(provider.session.session, "get", return_value=response) as mock_get:
            results = [rotator.query(ADDRESS) for _ in range(3)]

        provider.close()
        assert [r is not None and r.is_vpn for r in results] == [True, True, False]
        assert mock_get.call_count == 2
        assert rotator.cooling_remaining("proxycheck") == 0.0
        assert rotator.stats.throttled == 1


class TestProviderRotatorState:
    """Test state snapshots and reset."""

    def test_states_snapshot(self, fake_clock: FakeClock) -> None:
        rotator = ProviderRotator([StubProvider("a"), StubProvider("b")], cooldown_seconds=60, clock=fake_clock)
        rotator.mark_failed("b", RuntimeError("down"))
        fake_clock.advance(20)

        assert rotator.states() == {"a": 0.0, "b": pytest.approx(40.0)}

    def test_reset_clears_cooldowns(self, fake_clock: FakeClock) -> None:
        rotator = ProviderRotator([StubProvider("a")], clock=fake_clock)
        rotator.mark_failed("a")

        rotator.reset()

        assert not rotator.is_cooling("a")
        assert len(rotator) == 1
