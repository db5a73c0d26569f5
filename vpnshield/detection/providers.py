"""Reputation service adapters.

Each provider owns its endpoint, credential injection and the mapping from the
service's JSON to a :class:`DetectionResult`. The contract is:

- return a ``DetectionResult`` on success,
- return ``None`` when the provider has nothing to say (no API key configured,
  input that is not an IP address, address unknown to the service,
  service-reported lookup failure),
- raise :class:`ProviderError` on transport, timeout or parsing failures,
- let :class:`ProviderRateLimitedError` from the session propagate when the local
  token bucket is empty.

Providers hold no shared mutable state; the only per-instance state is the
rate-limited session, which is thread safe.

Response shapes (abridged)::

    proxycheck.io   {"status": "ok", "<ip>": {"proxy": "yes", "type": "VPN", "risk": 66, ...}}
    ip-api.com      {"status": "success", "proxy": true, "hosting": false, "countryCode": "DE", ...}
    vpnapi.io       {"security": {"vpn": true, "proxy": false, "tor": false, "relay": false}, ...}
    iphub.info      {"block": 1, "isp": "...", "countryCode": "NL", "asn": 60781}
    iphunter.info   {"status": "success", "data": {"block": 1, "country_code": "US"}}
    ipqualityscore  {"success": true, "vpn": true, "proxy": true, "fraud_score": 88, ...}
"""

from __future__ import annotations

import ipaddress
import logging
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

from .exceptions import ProviderResponseError
from .models import DetectionResult
from .rate_limiting import RateLimitedSession, get_service_rate_limit

logger = logging.getLogger(__name__)


def _text(data: Mapping[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None or value == "":
        return None
    return str(value)


def _flag(data: Mapping[str, Any], key: str) -> bool:
    return bool(data.get(key) or False)


def _score(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


class BaseProvider(ABC):
    """Base class for reputation service adapters.

    Attributes:
        name: Configuration key of the provider (e.g. ``"proxycheck"``)
        display_name: Name recorded as the result source (e.g. ``"proxycheck.io"``)
        requires_key: Whether the provider returns absence without an API key
    """

    name: str = ""
    display_name: str = ""
    requires_key: bool = False

    def __init__(self, api_key: Optional[str] = None, session: Optional[RateLimitedSession] = None) -> None:
        """Initialize the provider.

        Args:
            api_key: Secret for the service, if any
            session: Rate-limited HTTP session; one sized from ``SERVICE_RATE_LIMITS`` is
                created when omitted
        """
        self.api_key = api_key or None
        if session is None:
            rate, burst = get_service_rate_limit(self.name)
            session = RateLimitedSession(rate_limit=rate, burst=burst)
        self.session = session

    def check(self, address: str) -> Optional[DetectionResult]:
        """Look up ``address``; see the module docstring for the contract."""
        if self.requires_key and not self.api_key:
            logger.debug(f"{self.display_name} skipped: no API key configured")
            return None
        try:
            ip = ipaddress.ip_address(address.strip())
        except ValueError:
            logger.debug(f"{self.display_name} skipped: {address!r} is not an IP address")
            return None
        return self._lookup(str(ip))

    @abstractmethod
    def _lookup(self, address: str) -> Optional[DetectionResult]:
        """Query the service and map its response."""

    def _expect_object(self, payload: Any) -> Mapping[str, Any]:
        if not isinstance(payload, Mapping):
            raise ProviderResponseError(self.display_name, f"expected JSON object, got {type(payload).__name__}")
        return payload

    def close(self) -> None:
        self.session.close()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class ProxyCheckProvider(BaseProvider):
    """proxycheck.io v2 API; works without a key at a reduced daily quota."""

    name = "proxycheck"
    display_name = "proxycheck.io"
    API_BASE_URL = "https://proxycheck.io/v2"

    def _lookup(self, address: str) -> Optional[DetectionResult]:
        params: dict[str, Any] = {"vpn": 1, "asn": 1, "risk": 1, "port": 1}
        if self.api_key:
            params["key"] = self.api_key
        payload = self.session.fetch_json(self.display_name, f"{self.API_BASE_URL}/{address}", params=params)
        if payload is None:
            return None
        data = self._expect_object(payload)
        if data.get("status") in {"denied", "error"}:
            raise ProviderResponseError(self.display_name, str(data.get("message") or data.get("status")))

        ip_data = data.get(address)
        if not isinstance(ip_data, Mapping):
            return None

        ip_type = (_text(ip_data, "type") or "").lower()
        is_proxy_flag = (_text(ip_data, "proxy") or "").lower() == "yes"
        return DetectionResult(
            address=address,
            is_vpn=is_proxy_flag or ip_type == "vpn",
            is_proxy=ip_type == "proxy",
            is_hosting=ip_type in {"hosting", "data center"},
            is_tor=ip_type == "tor",
            service_name=_text(ip_data, "provider"),
            isp=_text(ip_data, "isp"),
            org=_text(ip_data, "organisation"),
            asn=_text(ip_data, "asn"),
            country=_text(ip_data, "country"),
            country_code=_text(ip_data, "isocode"),
            city=_text(ip_data, "city"),
            risk_score=_score(ip_data.get("risk")),
            source=self.display_name,
        )


class IpApiProvider(BaseProvider):
    """ip-api.com free endpoint (HTTP only, 45 requests per minute)."""

    name = "ip-api"
    display_name = "ip-api.com"
    API_BASE_URL = "http://ip-api.com/json"
    FIELDS = "status,message,country,countryCode,region,city,isp,org,as,proxy,hosting,query"

    def _lookup(self, address: str) -> Optional[DetectionResult]:
        payload = self.session.fetch_json(
            self.display_name, f"{self.API_BASE_URL}/{address}", params={"fields": self.FIELDS}
        )
        if payload is None:
            return None
        data = self._expect_object(payload)
        if data.get("status") != "success":
            # private/reserved ranges and invalid queries come back as status=fail
            logger.debug(f"ip-api.com declined {address}: {data.get('message')}")
            return None

        is_proxy = _flag(data, "proxy")
        return DetectionResult(
            address=address,
            is_vpn=is_proxy,
            is_proxy=is_proxy,
            is_hosting=_flag(data, "hosting"),
            isp=_text(data, "isp"),
            org=_text(data, "org"),
            asn=_text(data, "as"),
            country=_text(data, "country"),
            country_code=_text(data, "countryCode"),
            city=_text(data, "city"),
            source=self.display_name,
        )


class VpnApiProvider(BaseProvider):
    """vpnapi.io security lookup."""

    name = "vpnapi"
    display_name = "vpnapi.io"
    API_BASE_URL = "https://vpnapi.io/api"

    def _lookup(self, address: str) -> Optional[DetectionResult]:
        params = {"key": self.api_key} if self.api_key else None
        payload = self.session.fetch_json(self.display_name, f"{self.API_BASE_URL}/{address}", params=params)
        if payload is None:
            return None
        data = self._expect_object(payload)
        security = data.get("security")
        if not isinstance(security, Mapping):
            return None
        location = data.get("location") if isinstance(data.get("location"), Mapping) else {}
        network = data.get("network") if isinstance(data.get("network"), Mapping) else {}

        return DetectionResult(
            address=address,
            is_vpn=_flag(security, "vpn"),
            is_proxy=_flag(security, "proxy"),
            is_tor=_flag(security, "tor"),
            is_hosting=_flag(security, "relay"),
            isp=_text(network, "autonomous_system_organization"),
            asn=_text(network, "autonomous_system_number"),
            country=_text(location, "country"),
            country_code=_text(location, "country_code"),
            city=_text(location, "city"),
            source=self.display_name,
        )


class IpHubProvider(BaseProvider):
    """iphub.info v2; requires an ``X-Key`` header.

    ``block`` is 0 for residential, 1 for hosting/VPN and 2 for mixed use.
    """

    name = "iphub"
    display_name = "iphub.info"
    requires_key = True
    API_BASE_URL = "https://v2.api.iphub.info/ip"

    def _lookup(self, address: str) -> Optional[DetectionResult]:
        payload = self.session.fetch_json(
            self.display_name, f"{self.API_BASE_URL}/{address}", headers={"X-Key": str(self.api_key)}
        )
        if payload is None:
            return None
        data = self._expect_object(payload)
        try:
            block = int(data.get("block", 0))
        except (TypeError, ValueError) as exc:
            raise ProviderResponseError(self.display_name, f"invalid block value {data.get('block')!r}") from exc
        asn = data.get("asn")

        return DetectionResult(
            address=address,
            is_vpn=block == 1,
            is_hosting=block >= 1,
            isp=_text(data, "isp"),
            asn=f"AS{asn}" if asn else None,
            country=_text(data, "countryName"),
            country_code=_text(data, "countryCode"),
            source=self.display_name,
        )


class IpHunterProvider(BaseProvider):
    """iphunter.info v1; requires an ``X-Key`` header."""

    name = "iphunter"
    display_name = "iphunter.info"
    requires_key = True
    API_BASE_URL = "https://www.iphunter.info:8082/v1/ip"

    def _lookup(self, address: str) -> Optional[DetectionResult]:
        payload = self.session.fetch_json(
            self.display_name, f"{self.API_BASE_URL}/{address}", headers={"X-Key": str(self.api_key)}
        )
        if payload is None:
            return None
        data = self._expect_object(payload).get("data")
        if not isinstance(data, Mapping):
            return None
        try:
            block = int(data.get("block", 0))
        except (TypeError, ValueError) as exc:
            raise ProviderResponseError(self.display_name, f"invalid block value {data.get('block')!r}") from exc

        return DetectionResult(
            address=address,
            is_vpn=block == 1,
            is_hosting=block >= 1,
            isp=_text(data, "isp"),
            country=_text(data, "country_name"),
            country_code=_text(data, "country_code"),
            source=self.display_name,
        )


class IpQualityScoreProvider(BaseProvider):
    """IPQualityScore proxy/VPN detection; the key is part of the URL path."""

    name = "ipqualityscore"
    display_name = "ipqualityscore.com"
    requires_key = True
    API_BASE_URL = "https://ipqualityscore.com/api/json/ip"

    def _lookup(self, address: str) -> Optional[DetectionResult]:
        payload = self.session.fetch_json(
            self.display_name,
            f"{self.API_BASE_URL}/{self.api_key}/{address}",
            params={"strictness": 0, "allow_public_access_points": "true"},
        )
        if payload is None:
            return None
        data = self._expect_object(payload)
        if not data.get("success"):
            logger.debug(f"ipqualityscore.com declined {address}: {data.get('message')}")
            return None
        asn = data.get("ASN")

        return DetectionResult(
            address=address,
            is_vpn=_flag(data, "vpn"),
            is_proxy=_flag(data, "proxy"),
            is_tor=_flag(data, "tor"),
            is_hosting=_flag(data, "is_crawler"),
            isp=_text(data, "ISP"),
            org=_text(data, "organization"),
            asn=f"AS{asn}" if asn else None,
            country_code=_text(data, "country_code"),
            city=_text(data, "city"),
            risk_score=_score(data.get("fraud_score")),
            source=self.display_name,
        )


PROVIDER_CLASSES: Mapping[str, type[BaseProvider]] = {
    cls.name: cls
    for cls in (
        ProxyCheckProvider,
        IpApiProvider,
        VpnApiProvider,
        IpHubProvider,
        IpHunterProvider,
        IpQualityScoreProvider,
    )
}


__all__ = [
    "BaseProvider",
    "IpApiProvider",
    "IpHubProvider",
    "IpHunterProvider",
    "IpQualityScoreProvider",
    "PROVIDER_CLASSES",
    "ProxyCheckProvider",
    "VpnApiProvider",
]
