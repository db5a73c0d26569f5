"""Address and country exemptions."""

from __future__ import annotations

import ipaddress
import logging
import threading
from typing import Iterable, Optional

from .models import COUNTRY_WHITELISTED_PREFIX, DetectionResult

logger = logging.getLogger(__name__)


def _normalize(address: str) -> str:
    """Canonical text form of an address; unparsable input is returned stripped."""
    value = address.strip()
    try:
        return str(ipaddress.ip_address(value))
    except ValueError:
        return value


_PRIVATE_NETWORKS = tuple(
    ipaddress.ip_network(network)
    for network in (
        "10.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "fc00::/7",
        "fec0::/10",
    )
)


def is_private_or_local(address: str) -> bool:
    """True for loopback, link-local, private (site-local) and unspecified addresses.

    Only the RFC 1918 ranges and their IPv6 counterparts count as private here;
    documentation and shared-address ranges are treated as public.

    IPv4-mapped IPv6 addresses are judged by their embedded IPv4 address.
    Unparsable input is not considered local.
    """
    try:
        ip = ipaddress.ip_address(address.strip())
    except ValueError:
        return False
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    if ip.is_loopback or ip.is_link_local or ip.is_unspecified:
        return True
    return any(ip.version == network.version and ip in network for network in _PRIVATE_NETWORKS)


class Whitelist:
    """Explicit address set, private-range test and post-lookup country override.

    Example:
        >>> whitelist = Whitelist(addresses=["198.51.100.4"], countries=["nl"])
        >>> whitelist.is_whitelisted("10.1.2.3")
        True
        >>> whitelist.apply_country_override(DetectionResult("203.0.113.9", is_vpn=True, country_code="NL")).source
        'country_whitelisted:NL'
    """

    def __init__(self, addresses: Iterable[str] = (), countries: Iterable[str] = ()) -> None:
        self._lock = threading.Lock()
        self._addresses = {_normalize(address) for address in addresses if address.strip()}
        self.countries = frozenset(code.strip().upper() for code in countries if code.strip())

    def is_whitelisted(self, address: str) -> bool:
        """True if the address is explicitly exempted or in a private/local range."""
        normalized = _normalize(address)
        with self._lock:
            if normalized in self._addresses:
                return True
        return is_private_or_local(normalized)

    def add(self, address: str) -> None:
        with self._lock:
            self._addresses.add(_normalize(address))
        logger.info(f"Whitelisted address {address}")

    def remove(self, address: str) -> bool:
        """Remove an explicit exemption; returns True if it existed."""
        normalized = _normalize(address)
        with self._lock:
            removed = normalized in self._addresses
            self._addresses.discard(normalized)
        if removed:
            logger.info(f"Removed {address} from whitelist")
        return removed

    def addresses(self) -> set[str]:
        with self._lock:
            return set(self._addresses)

    def is_country_whitelisted(self, country_code: Optional[str]) -> bool:
        return bool(country_code) and country_code.strip().upper() in self.countries

    def apply_country_override(self, result: DetectionResult) -> DetectionResult:
        """Replace a result from an allow-listed country with a clean one.

        The replacement keeps the address and country, drops every flag, and is
        tagged ``country_whitelisted:<CODE>`` as its source.
        """
        if not self.is_country_whitelisted(result.country_code):
            return result
        code = str(result.country_code).strip().upper()
        if result.dangerous:
            logger.debug(f"Overriding {result.type_label} result for {result.address}: country {code} whitelisted")
        return DetectionResult.clean(
            result.address,
            f"{COUNTRY_WHITELISTED_PREFIX}{code}",
            country=result.country,
            country_code=code,
        )


__all__ = ["Whitelist", "is_private_or_local"]
