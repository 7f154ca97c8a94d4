"""Unit tests for settings resolution and YAML config loading."""

import logging
from pathlib import Path

import pytest

from dns_distributor.models import RecordType, SettingSource
from dns_distributor.providers import ADGUARD_CAPABILITIES
from dns_distributor.settings import (
    SETTINGS_SCHEMA,
    SettingsStore,
    coerce_setting,
    find_config_files,
    load_config,
    parse_provider,
)

# =============================================================================
# Settings resolution
# =============================================================================


def test_default_when_nothing_set() -> None:
    resolved = SettingsStore(environ={}).resolve("dns_default_ttl")

    assert resolved.value == 300
    assert resolved.source == SettingSource.DEFAULT


def test_env_beats_default() -> None:
    resolved = SettingsStore(environ={"DNS_DEFAULT_TTL": "600"}).resolve("dns_default_ttl")

    assert resolved.value == 600
    assert resolved.source == SettingSource.ENV


def test_database_beats_env() -> None:
    settings = SettingsStore(
        database=lambda: {"cleanup_orphaned": True}, environ={"CLEANUP_ORPHANED": "false"}
    )

    resolved = settings.resolve("cleanup_orphaned")

    assert resolved.value is True
    assert resolved.source == SettingSource.DATABASE


def test_invalid_value_falls_through(caplog: pytest.LogCaptureFixture) -> None:
    settings = SettingsStore(
        database=lambda: {"dns_default_ttl": "soon"}, environ={"DNS_DEFAULT_TTL": "later"}
    )

    with caplog.at_level(logging.WARNING):
        resolved = settings.resolve("dns_default_ttl")

    assert resolved.source == SettingSource.DEFAULT
    assert "Ignoring" in caplog.text


def test_blank_env_value_is_unset() -> None:
    resolved = SettingsStore(environ={"DNS_DEFAULT_CONTENT": "  "}).resolve("dns_default_content")

    assert resolved.source == SettingSource.DEFAULT


def test_unknown_setting_raises() -> None:
    with pytest.raises(KeyError):
        SettingsStore(environ={}).resolve("no_such_setting")


def test_resolve_all_covers_schema() -> None:
    keys = [s.key for s in SettingsStore(environ={}).resolve_all()]

    assert keys == sorted(SETTINGS_SCHEMA)


def test_global_defaults_from_settings() -> None:
    settings = SettingsStore(
        database=lambda: {"dns_default_type": "a"},
        environ={"DNS_DEFAULT_TTL_OVERRIDE": "yes", "DNS_DEFAULT_TTL": "120", "DNS_DEFAULT_PROXIED": "1"},
    )

    defaults = settings.global_defaults()

    assert defaults.record_type == RecordType.A
    assert defaults.ttl == 120
    assert defaults.ttl_override is True
    assert defaults.proxied is True
    assert defaults.content == ""


def test_grace_period_never_negative() -> None:
    assert SettingsStore(environ={"CLEANUP_GRACE_PERIOD": "-5"}).grace_period_minutes() == 0
    assert SettingsStore(environ={}).grace_period_minutes() == 15


def test_coerce_select_rejects_unknown_option() -> None:
    with pytest.raises(ValueError):
        coerce_setting(SETTINGS_SCHEMA["dns_default_type"], "MX")
    assert coerce_setting(SETTINGS_SCHEMA["dns_default_type"], " cname ") == "CNAME"


def test_coerce_int_rejects_bool() -> None:
    with pytest.raises(ValueError):
        coerce_setting(SETTINGS_SCHEMA["dns_default_ttl"], True)


# =============================================================================
# Config loading
# =============================================================================

CONFIG_YAML = """
providers:
  - id: "home"
    name: "Home AdGuard"
    type: "adguard"
    zone: "home.example.com."
    settings:
      url: "http://adguard"
  - id: "edge"
    type: "static"
    zone: "example.org"
    capabilities:
      record_types: ["A", "CNAME", "TXT"]
      ttl_min: 60
      ttl_max: 86400
      ttl_default: 300
      proxied: true
    defaults:
      ttl: 600
      proxied: false
  - id: "broken"
  - name: "no id"
    zone: "example.net"
hostname_overrides:
  - hostname: "*.media.example.com"
    proxied: false
  - reason: "missing hostname"
preserved_hostnames:
  - "mail.example.com"
  - hostname: "*.infra.example.com"
    reason: "managed by hand"
"""


def test_load_config(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    config_file = tmp_path / "config.yaml"
    config_file.write_text(CONFIG_YAML)

    with caplog.at_level(logging.WARNING):
        config = load_config(str(config_file))

    assert [p.id for p in config.providers] == ["home", "edge"]
    home, edge = config.providers
    assert home.zone == "home.example.com"
    assert home.name == "Home AdGuard"
    assert home.capabilities == ADGUARD_CAPABILITIES
    assert home.setting("url") == "http://adguard"
    assert edge.name == "edge"
    assert edge.capabilities.supports_proxied is True
    assert RecordType.TXT in edge.capabilities.supported_record_types
    assert edge.defaults.ttl == 600
    assert edge.defaults.proxied is False

    assert [o.hostname for o in config.hostname_overrides] == ["*.media.example.com"]
    assert [p.hostname for p in config.preserved_hostnames] == ["mail.example.com", "*.infra.example.com"]
    assert "Skipping provider entry" in caplog.text
    assert "Skipping hostname override" in caplog.text


def test_load_config_directory_merges_files(tmp_path: Path) -> None:
    (tmp_path / "a.yaml").write_text('providers:\n  - id: "a"\n    zone: "a.example.com"\n')
    (tmp_path / "b.yaml").write_text('preserved_hostnames:\n  - "keep.example.com"\n')
    (tmp_path / "c.yaml.template").write_text('providers:\n  - id: "c"\n    zone: "c.example.com"\n')

    config = load_config(str(tmp_path))

    assert [p.id for p in config.providers] == ["a"]
    assert [p.hostname for p in config.preserved_hostnames] == ["keep.example.com"]


def test_load_config_missing_path(tmp_path: Path) -> None:
    config = load_config(str(tmp_path / "missing.yaml"))

    assert config.providers == []


def test_load_config_invalid_yaml_is_skipped(tmp_path: Path) -> None:
    (tmp_path / "a.yaml").write_text("providers: [unclosed\n")
    (tmp_path / "b.yaml").write_text('providers:\n  - id: "b"\n    zone: "b.example.com"\n')

    config = load_config(str(tmp_path))

    assert [p.id for p in config.providers] == ["b"]


def test_unknown_type_without_capabilities_is_rejected() -> None:
    with pytest.raises(ValueError):
        parse_provider({"id": "x", "type": "route53", "zone": "example.com"})


def test_find_config_files_single_file(tmp_path: Path) -> None:
    config_file = tmp_path / "config.yaml"
    config_file.write_text("providers: []\n")

    assert find_config_files(str(config_file)) == [str(config_file)]
    assert find_config_files(str(tmp_path / "nope")) == []
