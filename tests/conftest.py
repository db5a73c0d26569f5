"""Shared pytest fixtures for vpnshield tests."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Iterator

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from vpnshield.detection.models import DetectionResult  # noqa: E402
from vpnshield.detection.store import DetectionStore  # noqa: E402
from vpnshield.settings import DatabaseSettings  # noqa: E402

from tests.fixtures.vpn_fixtures import FakeClock, FakeUtcClock  # noqa: E402


@pytest.fixture
def fake_clock() -> FakeClock:
    """Monotonic clock starting at t=1000s."""
    return FakeClock()


@pytest.fixture
def utc_clock() -> FakeUtcClock:
    """UTC clock starting at 2026-03-14 12:00:00."""
    return FakeUtcClock()


@pytest.fixture
def detection_store(tmp_path: Path, utc_clock: FakeUtcClock) -> Iterator[DetectionStore]:
    """File-backed SQLite store with the schema applied."""
    settings = DatabaseSettings(url=f"sqlite:///{tmp_path / 'vpn.sqlite'}")
    store = DetectionStore.from_settings(settings, clock=utc_clock)
    yield store
    store.close()


@pytest.fixture
def vpn_result() -> DetectionResult:
    """A VPN detection for a documentation-range address."""
    return DetectionResult(
        address="203.0.113.7",
        is_vpn=True,
        service_name="NordVPN",
        isp="Datacamp Limited",
        org="Datacamp",
        asn="AS60068",
        country="Netherlands",
        country_code="NL",
        city="Amsterdam",
        risk_score=66.0,
        source="proxycheck.io",
    )
