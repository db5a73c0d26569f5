"""Runtime configuration helpers for vpnshield."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence

from vpnshield.detection.models import VPNAction

_DEFAULT_DB_PATH = Path("vpn_detections.sqlite")

DEFAULT_PROVIDERS = ("proxycheck", "ip-api", "vpnapi", "iphub")


def _coerce_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "f", "no", "n", "off"}:
        return False
    return default


def _coerce_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


def _coerce_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return [str(item).strip() for item in value if str(item).strip()]


@dataclass(slots=True)
class DatabaseSettings:
    """Normalized database configuration for the detection store."""

    url: str
    echo: bool = False
    pool_size: int | None = None
    pool_timeout: int = 30
    sqlite_wal: bool = True
    sqlite_cache_size: int = -16000
    sqlite_synchronous: str = "NORMAL"
    sqlite_journal_fallback: str = "DELETE"

    @classmethod
    def from_sources(
        cls,
        config: Mapping[str, Any] | None = None,
        env_prefix: str = "VPNSHIELD_",
    ) -> "DatabaseSettings":
        """Build settings from defaults, optional config mapping, and environment variables.

        Precedence order (highest to lowest):
        1. Explicit config mapping values
        2. Environment variables
        3. Default values
        """
        cfg: dict[str, Any] = {
            "url": f"sqlite:///{_DEFAULT_DB_PATH.resolve()}",
            "echo": False,
            "pool_size": None,
            "pool_timeout": 30,
            "sqlite_wal": True,
            "sqlite_cache_size": -16000,
            "sqlite_synchronous": "NORMAL",
            "sqlite_journal_fallback": "DELETE",
        }

        config_keys: set[str] = set()
        if config:
            config_keys = {k for k, v in config.items() if v is not None}
            cfg.update({k: v for k, v in config.items() if v is not None})

        env = os.environ
        prefix = env_prefix.upper()

        if "url" not in config_keys:
            url_override = env.get(f"{prefix}DB_URL")
            if url_override:
                cfg["url"] = url_override
            else:
                path_override = env.get(f"{prefix}DB_PATH")
                if path_override:
                    cfg["url"] = f"sqlite:///{Path(path_override).resolve()}"

        if "echo" not in config_keys:
            cfg["echo"] = _coerce_bool(env.get(f"{prefix}DB_ECHO"), bool(cfg["echo"]))

        if "pool_size" not in config_keys:
            pool_size = env.get(f"{prefix}DB_POOL_SIZE")
            if pool_size is not None:
                coerced = _coerce_int(pool_size, -1)
                cfg["pool_size"] = coerced if coerced >= 0 else None

        if "pool_timeout" not in config_keys:
            cfg["pool_timeout"] = _coerce_int(env.get(f"{prefix}DB_POOL_TIMEOUT"), int(cfg["pool_timeout"]))

        if "sqlite_wal" not in config_keys:
            cfg["sqlite_wal"] = _coerce_bool(env.get(f"{prefix}DB_SQLITE_WAL"), bool(cfg["sqlite_wal"]))

        return cls(**cfg)


def load_database_settings(
    config: Mapping[str, Any] | None = None,
    env_prefix: str = "VPNSHIELD_",
) -> DatabaseSettings:
    """Convenience wrapper used by embedding applications."""
    return DatabaseSettings.from_sources(config=config, env_prefix=env_prefix)


@dataclass(slots=True, frozen=True)
class DetectionSettings:
    """Configuration consumed by the detection core.

    Attributes:
        enabled: Master switch for connection checks
        action: Action the caller should take on a dangerous result
        cache_ttl_minutes: Lifetime of a cached lookup result
        provider_cooldown_seconds: How long a failed provider is skipped
        providers: Ordered provider names used by the rotator
        api_keys: Provider name to secret
        whitelist_ips: Addresses never checked
        whitelist_countries: ISO country codes whose results are forced clean
        alerts_enabled: Whether staff alerts should be sent by the caller
        max_workers: Size of the worker pool running lookups and store writes
        connect_timeout: Per-request connect timeout in seconds
        read_timeout: Per-request read timeout in seconds
        total_timeout: Ceiling on one provider call, body read included
    """

    enabled: bool = False
    action: VPNAction = VPNAction.WARN
    cache_ttl_minutes: int = 60
    provider_cooldown_seconds: int = 300
    providers: Sequence[str] = DEFAULT_PROVIDERS
    api_keys: Mapping[str, str] = field(default_factory=dict)
    whitelist_ips: Sequence[str] = ()
    whitelist_countries: Sequence[str] = ()
    alerts_enabled: bool = True
    max_workers: int = 4
    connect_timeout: float = 5.0
    read_timeout: float = 10.0
    total_timeout: float = 15.0

    def __post_init__(self) -> None:
        if self.cache_ttl_minutes <= 0:
            raise ValueError(f"cache_ttl_minutes must be positive, got {self.cache_ttl_minutes}")
        if self.provider_cooldown_seconds < 0:
            raise ValueError(f"provider_cooldown_seconds must be >= 0, got {self.provider_cooldown_seconds}")
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")

    @property
    def cache_ttl_seconds(self) -> float:
        """Cache lifetime expressed in seconds."""
        return float(self.cache_ttl_minutes * 60)

    @classmethod
    def from_sources(
        cls,
        config: Mapping[str, Any] | None = None,
        env_prefix: str = "VPNSHIELD_",
    ) -> "DetectionSettings":
        """Build detection settings from an optional mapping and environment variables.

        Both the flat keys (``cache_ttl_minutes``) and the nested/hyphenated layout used by
        plugin-style config files (``cache-duration``, ``api-keys``, ``whitelist.ips``) are
        accepted. Explicit mapping values win over environment variables.
        """
        raw: Dict[str, Any] = dict(config or {})
        whitelist = raw.pop("whitelist", None) or {}
        aliases = {
            "cache-duration": "cache_ttl_minutes",
            "cache_duration": "cache_ttl_minutes",
            "provider-cooldown": "provider_cooldown_seconds",
            "api-keys": "api_keys",
            "alerts": "alerts_enabled",
        }
        for alias, target in aliases.items():
            if alias in raw:
                raw.setdefault(target, raw.pop(alias))
        if "ips" in whitelist:
            raw.setdefault("whitelist_ips", whitelist["ips"])
        if "countries" in whitelist:
            raw.setdefault("whitelist_countries", whitelist["countries"])

        cfg = {k: v for k, v in raw.items() if v is not None}
        env = os.environ
        prefix = env_prefix.upper()

        enabled = cfg.get("enabled")
        if enabled is None:
            enabled = _coerce_bool(env.get(f"{prefix}ENABLED"), False)

        action = cfg.get("action", env.get(f"{prefix}ACTION"))
        cache_ttl = cfg.get("cache_ttl_minutes")
        if cache_ttl is None:
            cache_ttl = _coerce_int(env.get(f"{prefix}CACHE_TTL_MINUTES"), 60)
        cooldown = cfg.get("provider_cooldown_seconds")
        if cooldown is None:
            cooldown = _coerce_int(env.get(f"{prefix}PROVIDER_COOLDOWN_SECONDS"), 300)
        max_workers = cfg.get("max_workers")
        if max_workers is None:
            max_workers = _coerce_int(env.get(f"{prefix}MAX_WORKERS"), 4)

        providers = _coerce_list(cfg.get("providers", env.get(f"{prefix}PROVIDERS")))

        api_keys = {str(k).lower(): str(v) for k, v in dict(cfg.get("api_keys") or {}).items() if v}
        key_prefix = f"{prefix}API_KEY_"
        for name, value in env.items():
            if name.startswith(key_prefix) and value:
                provider = name[len(key_prefix) :].lower().replace("_", "-")
                api_keys.setdefault(provider, value)

        alerts = cfg.get("alerts_enabled")
        if alerts is None:
            alerts = _coerce_bool(env.get(f"{prefix}ALERTS_ENABLED"), True)

        return cls(
            enabled=bool(enabled),
            action=VPNAction.parse(action),
            cache_ttl_minutes=int(cache_ttl),
            provider_cooldown_seconds=int(cooldown),
            providers=tuple(providers) if providers else DEFAULT_PROVIDERS,
            api_keys=api_keys,
            whitelist_ips=tuple(_coerce_list(cfg.get("whitelist_ips"))),
            whitelist_countries=tuple(code.upper() for code in _coerce_list(cfg.get("whitelist_countries"))),
            alerts_enabled=bool(alerts),
            max_workers=int(max_workers),
            connect_timeout=float(cfg.get("connect_timeout", 5.0)),
            read_timeout=float(cfg.get("read_timeout", 10.0)),
            total_timeout=float(cfg.get("total_timeout", 15.0)),
        )


__all__ = ["DEFAULT_PROVIDERS", "DatabaseSettings", "DetectionSettings", "load_database_settings"]
