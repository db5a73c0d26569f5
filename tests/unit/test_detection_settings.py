"""Tests for detection and database settings."""

from __future__ import annotations

from pathlib import Path

import pytest

from vpnshield.detection.models import VPNAction
from vpnshield.settings import DEFAULT_PROVIDERS, DatabaseSettings, DetectionSettings, load_database_settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove any VPNSHIELD_* variables from the host environment."""
    import os

    for name in list(os.environ):
        if name.startswith("VPNSHIELD_"):
            monkeypatch.delenv(name, raising=False)


class TestDetectionSettingsDefaults:
    """Test default detection configuration."""

    def test_defaults(self) -> None:
        settings = DetectionSettings.from_sources()

        assert settings.enabled is False
        assert settings.action is VPNAction.WARN
        assert settings.cache_ttl_minutes == 60
        assert settings.cache_ttl_seconds == 3600.0
        assert settings.provider_cooldown_seconds == 300
        assert tuple(settings.providers) == DEFAULT_PROVIDERS
        assert settings.alerts_enabled is True
        assert settings.max_workers == 4

    def test_invalid_ttl_rejected(self) -> None:
        with pytest.raises(ValueError):
            DetectionSettings(cache_ttl_minutes=0)

    def test_invalid_worker_count_rejected(self) -> None:
        with pytest.raises(ValueError):
            DetectionSettings(max_workers=0)


class TestDetectionSettingsFromMapping:
    """Test building settings from configuration mappings."""

    def test_flat_keys(self) -> None:
        settings = DetectionSettings.from_sources(
            {
                "enabled": True,
                "action": "KICK",
                "cache_ttl_minutes": 15,
                "provider_cooldown_seconds": 60,
                "providers": ["ip-api", "vpnapi"],
                "api_keys": {"VPNAPI": "secret"},
                "whitelist_ips": ["198.51.100.4"],
                "whitelist_countries": ["nl", "be"],
            }
        )

        assert settings.enabled is True
        assert settings.action is VPNAction.KICK
        assert settings.cache_ttl_seconds == 900.0
        assert settings.provider_cooldown_seconds == 60
        assert settings.providers == ("ip-api", "vpnapi")
        assert settings.api_keys == {"vpnapi": "secret"}
        assert settings.whitelist_ips == ("198.51.100.4",)
        assert settings.whitelist_countries == ("NL", "BE")

    def test_plugin_style_keys(self) -> None:
        """Hyphenated and nested keys from plugin config files are accepted."""
        settings = DetectionSettings.from_sources(
            {
                "cache-duration": 30,
                "api-keys": {"iphub": "abc", "proxycheck": ""},
                "alerts": False,
                "whitelist": {"ips": ["203.0.113.9"], "countries": ["de"]},
            }
        )

        assert settings.cache_ttl_minutes == 30
        assert settings.api_keys == {"iphub": "abc"}
        assert settings.alerts_enabled is False
        assert settings.whitelist_ips == ("203.0.113.9",)
        assert settings.whitelist_countries == ("DE",)

    def test_unknown_action_falls_back_to_warn(self) -> None:
        assert DetectionSettings.from_sources({"action": "ban"}).action is VPNAction.WARN


class TestDetectionSettingsFromEnvironment:
    """Test environment variable overrides."""

    def test_environment_values(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("VPNSHIELD_ENABLED", "yes")
        monkeypatch.setenv("VPNSHIELD_ACTION", "allow")
        monkeypatch.setenv("VPNSHIELD_CACHE_TTL_MINUTES", "5")
        monkeypatch.setenv("VPNSHIELD_PROVIDERS", "iphub, ip-api")
        monkeypatch.setenv("VPNSHIELD_API_KEY_IPHUB", "hub-key")
        monkeypatch.setenv("VPNSHIELD_API_KEY_IP_API", "api-key")

        settings = DetectionSettings.from_sources()

        assert settings.enabled is True
        assert settings.action is VPNAction.ALLOW
        assert settings.cache_ttl_minutes == 5
        assert settings.providers == ("iphub", "ip-api")
        assert settings.api_keys == {"iphub": "hub-key", "ip-api": "api-key"}

    def test_mapping_wins_over_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("VPNSHIELD_ENABLED", "true")
        monkeypatch.setenv("VPNSHIELD_API_KEY_IPHUB", "env-key")

        settings = DetectionSettings.from_sources({"enabled": False, "api_keys": {"iphub": "cfg-key"}})

        assert settings.enabled is False
        assert settings.api_keys["iphub"] == "cfg-key"

    def test_unparsable_integer_uses_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("VPNSHIELD_PROVIDER_COOLDOWN_SECONDS", "soon")

        assert DetectionSettings.from_sources().provider_cooldown_seconds == 300


class TestDatabaseSettings:
    """Test database settings resolution."""

    def test_default_is_sqlite_file(self) -> None:
        settings = DatabaseSettings.from_sources()

        assert settings.url.startswith("sqlite:///")
        assert settings.url.endswith("vpn_detections.sqlite")

    def test_db_path_env(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv("VPNSHIELD_DB_PATH", str(tmp_path / "custom.sqlite"))

        settings = load_database_settings()

        assert settings.url == f"sqlite:///{(tmp_path / 'custom.sqlite').resolve()}"

    def test_db_url_env_wins_over_path(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("VPNSHIELD_DB_URL", "postgresql://vpn:pw@localhost/vpn")
        monkeypatch.setenv("VPNSHIELD_DB_PATH", "/tmp/ignored.sqlite")

        assert DatabaseSettings.from_sources().url == "postgresql://vpn:pw@localhost/vpn"

    def test_explicit_config_wins(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("VPNSHIELD_DB_URL", "sqlite:///from-env.sqlite")
        monkeypatch.setenv("VPNSHIELD_DB_ECHO", "true")

        settings = DatabaseSettings.from_sources({"url": "sqlite://", "echo": False})

        assert settings.url == "sqlite://"
        assert settings.echo is False

    def test_pool_size_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("VPNSHIELD_DB_POOL_SIZE", "8")
        monkeypatch.setenv("VPNSHIELD_DB_SQLITE_WAL", "off")

        settings = DatabaseSettings.from_sources()

        assert settings.pool_size == 8
        assert settings.sqlite_wal is False
