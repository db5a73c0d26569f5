"""Data models for anonymized-connection detection.

This module provides the immutable lookup result shared by every provider, the
action enum consumed by callers, and the plain records returned by the store.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

UNKNOWN_RISK_SCORE = -1.0
UNKNOWN_SOURCE = "none"
WHITELISTED_SOURCE = "whitelisted"
COUNTRY_WHITELISTED_PREFIX = "country_whitelisted:"


class VPNAction(str, Enum):
    """Action a caller takes when a connection is classified as dangerous.

    Attributes:
        KICK: Disconnect the subject
        WARN: Only notify staff
        ALLOW: Allow but log
        NONE: Do nothing
    """

    KICK = "kick"
    WARN = "warn"
    ALLOW = "allow"
    NONE = "none"

    @classmethod
    def parse(cls, value: Any, default: "VPNAction | None" = None) -> "VPNAction":
        """Parse a configured action name, falling back to WARN on unknown input."""
        if isinstance(value, cls):
            return value
        fallback = default if default is not None else cls.WARN
        if value is None:
            return fallback
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return fallback


@dataclass(slots=True, frozen=True)
class DetectionResult:
    """Immutable outcome of one address lookup.

    Attributes:
        address: The looked-up IP address
        is_vpn: Address belongs to a VPN service
        is_proxy: Address is an open or anonymous proxy
        is_hosting: Address belongs to a hosting or datacenter range
        is_tor: Address is a Tor exit node
        service_name: VPN/proxy operator reported by the provider
        isp: Internet service provider
        org: Owning organisation
        asn: Autonomous system, usually ``AS<number>``
        country: Country name
        country_code: ISO 3166-1 alpha-2 code
        city: City name
        real_address: Address believed to be behind the VPN, if a provider reports one
        risk_score: Provider risk score; ``UNKNOWN_RISK_SCORE`` when undetermined
        source: Name of the provider that answered, or a tag such as ``whitelisted``
        checked_at: UTC creation timestamp

    Example:
        >>> result = DetectionResult(address="203.0.113.7", is_vpn=True, source="vpnapi.io")
        >>> result.dangerous, result.type_label
        (True, 'VPN')
    """

    address: str
    is_vpn: bool = False
    is_proxy: bool = False
    is_hosting: bool = False
    is_tor: bool = False
    service_name: Optional[str] = None
    isp: Optional[str] = None
    org: Optional[str] = None
    asn: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None
    city: Optional[str] = None
    real_address: Optional[str] = None
    risk_score: float = 0.0
    source: str = ""
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def dangerous(self) -> bool:
        """True for any VPN, proxy, hosting or Tor classification."""
        return self.is_vpn or self.is_proxy or self.is_hosting or self.is_tor

    @property
    def is_unknown(self) -> bool:
        """True when no provider could classify the address."""
        return self.source == UNKNOWN_SOURCE and self.risk_score == UNKNOWN_RISK_SCORE

    @property
    def type_label(self) -> str:
        """Human readable classification, most severe first."""
        if self.is_tor:
            return "Tor Exit Node"
        if self.is_vpn:
            return "VPN"
        if self.is_proxy:
            return "Proxy"
        if self.is_hosting:
            return "Hosting/Datacenter"
        return "Clean"

    @property
    def service_label(self) -> Optional[str]:
        """Best available name for the service behind the address."""
        return self.service_name or self.org or self.isp or None

    @classmethod
    def clean(
        cls,
        address: str,
        source: str,
        *,
        country: Optional[str] = None,
        country_code: Optional[str] = None,
    ) -> "DetectionResult":
        """Build a non-dangerous result tagged with ``source``."""
        return cls(address=address, source=source, country=country, country_code=country_code)

    @classmethod
    def unknown(cls, address: str) -> "DetectionResult":
        """Build the fail-open result used when no provider answered."""
        return cls(address=address, risk_score=UNKNOWN_RISK_SCORE, source=UNKNOWN_SOURCE)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["checked_at"] = self.checked_at.isoformat()
        data["dangerous"] = self.dangerous
        return data


@dataclass(slots=True, frozen=True)
class DetectionRecord:
    """A persisted detection row as returned by the store."""

    address: str
    subject_id: Optional[str]
    subject_name: Optional[str]
    is_vpn: bool
    is_proxy: bool
    is_hosting: bool
    is_tor: bool
    service_name: Optional[str]
    isp: Optional[str]
    org: Optional[str]
    asn: Optional[str]
    country: Optional[str]
    country_code: Optional[str]
    city: Optional[str]
    real_address: Optional[str]
    risk_score: float
    api_provider: Optional[str]
    action: Optional[str]
    detected_at: datetime

    @property
    def dangerous(self) -> bool:
        return self.is_vpn or self.is_proxy or self.is_hosting or self.is_tor


@dataclass(slots=True, frozen=True)
class AddressHistoryEntry:
    """One address observed for one subject."""

    subject_id: str
    address: str
    is_vpn: bool
    first_seen: datetime
    last_seen: datetime
    visit_count: int


@dataclass(slots=True, frozen=True)
class ProviderStat:
    """Aggregate detection count for one VPN/hosting service."""

    provider_name: str
    detection_count: int
    first_detected: Optional[datetime] = None
    last_detected: Optional[datetime] = None


@dataclass(slots=True)
class DetectionStats:
    """Aggregate reporting figures for persisted detections."""

    total_detections: int = 0
    unique_dangerous_addresses: int = 0
    total_kicks: int = 0
    total_warnings: int = 0
    detections_today: int = 0
    top_providers: list[ProviderStat] = field(default_factory=list)


__all__ = [
    "AddressHistoryEntry",
    "COUNTRY_WHITELISTED_PREFIX",
    "DetectionRecord",
    "DetectionResult",
    "DetectionStats",
    "ProviderStat",
    "UNKNOWN_RISK_SCORE",
    "UNKNOWN_SOURCE",
    "VPNAction",
    "WHITELISTED_SOURCE",
]
