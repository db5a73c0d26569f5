"""Factory helpers for building the provider rotation from configuration."""

from __future__ import annotations

import logging
from typing import Mapping, Optional, Sequence

from .providers import PROVIDER_CLASSES, BaseProvider, IpApiProvider
from .rate_limiting import RateLimitedSession, get_service_rate_limit

logger = logging.getLogger(__name__)

FALLBACK_PROVIDER = IpApiProvider.name


def create_provider(
    name: str,
    api_key: Optional[str] = None,
    connect_timeout: float = 5.0,
    read_timeout: float = 10.0,
    total_timeout: float = 15.0,
) -> BaseProvider:
    """Build one provider by configuration name.

    Raises:
        KeyError: If ``name`` is not a known provider
    """
    key = name.strip().lower()
    provider_cls = PROVIDER_CLASSES[key]
    rate, burst = get_service_rate_limit(key)
    session = RateLimitedSession(
        rate_limit=rate,
        burst=burst,
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
        total_timeout=total_timeout,
    )
    return provider_cls(api_key=api_key, session=session)


def create_providers(
    names: Sequence[str],
    api_keys: Optional[Mapping[str, str]] = None,
    connect_timeout: float = 5.0,
    read_timeout: float = 10.0,
    total_timeout: float = 15.0,
) -> list[BaseProvider]:
    """Build the ordered provider list used by the rotator.

    Unknown names are logged and skipped. If nothing usable remains, the keyless
    ip-api.com provider is used so the rotation is never empty.
    """
    keys = {k.lower(): v for k, v in (api_keys or {}).items()}
    providers: list[BaseProvider] = []
    seen: set[str] = set()

    for raw_name in names:
        name = raw_name.strip().lower()
        if name in seen:
            continue
        if name not in PROVIDER_CLASSES:
            logger.warning(f"Ignoring unknown VPN provider '{raw_name}' (known: {', '.join(PROVIDER_CLASSES)})")
            continue
        seen.add(name)
        providers.append(create_provider(name, keys.get(name), connect_timeout, read_timeout, total_timeout))

    if not providers:
        logger.warning(f"No usable VPN providers configured, falling back to {FALLBACK_PROVIDER}")
        providers.append(create_provider(FALLBACK_PROVIDER, None, connect_timeout, read_timeout, total_timeout))

    logger.info(f"Anti-VPN initialized with {len(providers)} providers: {', '.join(p.name for p in providers)}")
    return providers


__all__ = ["FALLBACK_PROVIDER", "create_provider", "create_providers"]
