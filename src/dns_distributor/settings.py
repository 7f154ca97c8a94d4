"""Settings resolution and YAML configuration loading.

Settings resolve in order database (state file) -> environment -> schema
default, and every value carries the source it came from.

Config file layout (``CONFIG_PATH``, a file or a directory of ``*.yaml``)::

    providers:
      - id: "home"
        name: "Home AdGuard"
        type: "adguard"
        zone: "home.example.com"
        settings:
          url: "http://adguard"
          username: "admin"
          password: "secret"
      - id: "edge"
        name: "Edge AdGuard"
        type: "adguard"
        zone: "example.org"
        settings:
          url: "http://adguard.example.org"
        defaults:
          record_type: "CNAME"
    hostname_overrides:
      - hostname: "*.media.example.com"
        proxied: false
        reason: "streaming needs direct IP"
    preserved_hostnames:
      - "mail.example.com"
      - hostname: "*.infra.example.com"
        reason: "managed by hand"

Providers of any other type need explicit ``capabilities`` and have no client:
they can be planned against, but creates on them fail with "No client
configured".
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import yaml

from dns_distributor.models import (
    GlobalDefaults,
    HostnameOverride,
    PreservedHostname,
    Provider,
    ProviderCapabilities,
    ProviderDefaults,
    RecordType,
    ResolvedSetting,
    SettingSource,
)
from dns_distributor.providers import ADGUARD_CAPABILITIES
from dns_distributor.store import override_from_dict, preserved_from_dict

logger = logging.getLogger(__name__)

# =============================================================================
# Settings Schema
# =============================================================================


@dataclass(frozen=True)
class SettingDefinition:
    key: str
    type: str
    default: Any
    env_var: str
    description: str = ""
    options: Tuple[str, ...] = ()


SETTINGS_SCHEMA: Dict[str, SettingDefinition] = {
    d.key: d
    for d in (
        SettingDefinition(
            "dns_default_type", "select", "CNAME", "DNS_DEFAULT_TYPE",
            "Default record type when not specified",
            options=("A", "AAAA", "CNAME"),
        ),
        SettingDefinition(
            "dns_default_ttl_override", "bool", False, "DNS_DEFAULT_TTL_OVERRIDE",
            "Use the global TTL instead of provider defaults",
        ),
        SettingDefinition(
            "dns_default_ttl", "int", 300, "DNS_DEFAULT_TTL",
            "Global TTL, clamped to provider limits; only used with the override enabled",
        ),
        SettingDefinition(
            "dns_default_proxied", "bool", False, "DNS_DEFAULT_PROXIED",
            "Proxy records by default on providers that support it",
        ),
        SettingDefinition(
            "dns_default_content", "str", "", "DNS_DEFAULT_CONTENT",
            "Default record content (e.g. CNAME target)",
        ),
        SettingDefinition(
            "cleanup_orphaned", "bool", False, "CLEANUP_ORPHANED",
            "Delete orphaned records once their grace period has elapsed",
        ),
        SettingDefinition(
            "cleanup_grace_period", "int", 15, "CLEANUP_GRACE_PERIOD",
            "Minutes to wait before deleting an orphaned record",
        ),
    )
}


def _parse_bool(value: Any, *, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def coerce_setting(definition: SettingDefinition, value: Any) -> Any:
    """Convert a raw value to the setting's type; raises ValueError when it cannot."""
    if definition.type == "bool":
        return _parse_bool(value, default=bool(definition.default))
    if definition.type == "int":
        if isinstance(value, bool):
            raise ValueError(f"{definition.key} expects an integer, got {value!r}")
        return int(str(value).strip())
    if definition.type == "select":
        text = str(value).strip().upper()
        if text not in definition.options:
            raise ValueError(f"{definition.key} must be one of {list(definition.options)}")
        return text
    return str(value)


class SettingsStore:
    """Resolves global settings with a source tag (database, env or default)."""

    def __init__(
        self,
        database: Optional[Callable[[], Dict[str, Any]]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self._database = database or (lambda: {})
        self._environ = os.environ if environ is None else environ

    def resolve(self, key: str) -> ResolvedSetting:
        definition = SETTINGS_SCHEMA.get(key)
        if definition is None:
            raise KeyError(f"Unknown setting: {key}")

        stored = self._database()
        if key in stored and stored[key] is not None:
            try:
                return ResolvedSetting(key, coerce_setting(definition, stored[key]), SettingSource.DATABASE)
            except ValueError as e:
                logger.warning(f"Ignoring stored value for {key}: {e}")

        raw = self._environ.get(definition.env_var)
        if raw is not None and raw.strip() != "":
            try:
                return ResolvedSetting(key, coerce_setting(definition, raw), SettingSource.ENV)
            except ValueError as e:
                logger.warning(f"Ignoring {definition.env_var}={raw!r}: {e}")

        return ResolvedSetting(key, definition.default, SettingSource.DEFAULT)

    def value(self, key: str) -> Any:
        return self.resolve(key).value

    def resolve_all(self) -> List[ResolvedSetting]:
        return [self.resolve(key) for key in sorted(SETTINGS_SCHEMA)]

    def global_defaults(self) -> GlobalDefaults:
        return GlobalDefaults(
            ttl=self.value("dns_default_ttl"),
            ttl_override=self.value("dns_default_ttl_override"),
            proxied=self.value("dns_default_proxied"),
            record_type=RecordType.parse(self.value("dns_default_type")),
            content=self.value("dns_default_content"),
        )

    def grace_period_minutes(self) -> int:
        return max(0, int(self.value("cleanup_grace_period")))


# =============================================================================
# Config Files
# =============================================================================


def get_config_file_mtime(config_path: str) -> float:
    """Get modification time of config file, returns 0 if file doesn't exist."""
    try:
        return os.path.getmtime(config_path) if os.path.exists(config_path) else 0.0
    except OSError:
        return 0.0


def find_config_files(config_path: str) -> List[str]:
    """Return config_path itself, or every *.yaml file in it when it is a directory."""
    path = Path(config_path)
    if path.is_file():
        return [str(path)]
    if path.is_dir():
        return [str(f) for f in sorted(path.glob("*.yaml")) if not f.name.endswith(".template")]
    return []


def get_config_files_mtimes(config_files: List[str]) -> Dict[str, float]:
    return {f: get_config_file_mtime(f) for f in config_files}


# Capabilities assumed for provider types when the config does not spell them out.
BUILTIN_CAPABILITIES: Dict[str, ProviderCapabilities] = {
    "adguard": ADGUARD_CAPABILITIES,
}


@dataclass
class DistributorConfig:
    providers: List[Provider] = field(default_factory=list)
    hostname_overrides: List[HostnameOverride] = field(default_factory=list)
    preserved_hostnames: List[PreservedHostname] = field(default_factory=list)


def _parse_capabilities(item: Dict[str, Any], provider_type: str) -> ProviderCapabilities:
    raw = item.get("capabilities")
    if not isinstance(raw, dict):
        if provider_type in BUILTIN_CAPABILITIES:
            return BUILTIN_CAPABILITIES[provider_type]
        raise ValueError(f"provider type '{provider_type}' requires explicit capabilities")

    record_types = raw.get("record_types") or ["A", "AAAA", "CNAME"]
    ttl_min = int(raw.get("ttl_min", 1))
    ttl_max = int(raw.get("ttl_max", 86400))
    return ProviderCapabilities(
        supported_record_types=frozenset(RecordType.parse(t) for t in record_types),
        ttl_min=ttl_min,
        ttl_max=ttl_max,
        ttl_default=int(raw.get("ttl_default", ttl_min)),
        supports_proxied=_parse_bool(raw.get("proxied"), default=False),
    )


def _parse_defaults(raw: Any) -> ProviderDefaults:
    if not isinstance(raw, dict):
        return ProviderDefaults()
    record_type = raw.get("record_type") or raw.get("type")
    return ProviderDefaults(
        record_type=RecordType.parse(record_type) if record_type else None,
        content=str(raw["content"]) if raw.get("content") else None,
        ttl=int(raw["ttl"]) if raw.get("ttl") is not None else None,
        proxied=_parse_bool(raw["proxied"]) if raw.get("proxied") is not None else None,
    )


def parse_provider(item: Dict[str, Any]) -> Provider:
    provider_id = str(item.get("id") or "").strip()
    zone = str(item.get("zone") or "").strip().rstrip(".")
    if not provider_id or not zone:
        raise ValueError("provider requires 'id' and 'zone'")
    provider_type = str(item.get("type") or "adguard").strip().lower()
    settings = item.get("settings") if isinstance(item.get("settings"), dict) else {}
    return Provider(
        id=provider_id,
        name=str(item.get("name") or provider_id).strip(),
        type=provider_type,
        zone=zone,
        capabilities=_parse_capabilities(item, provider_type),
        enabled=_parse_bool(item.get("enabled"), default=True),
        defaults=_parse_defaults(item.get("defaults")),
        settings=tuple(sorted((str(k), str(v)) for k, v in settings.items() if v is not None)),
    )


def load_config(config_path: str) -> DistributorConfig:
    """Load providers, overrides and preserved hostnames from YAML config file(s).

    Malformed entries are skipped with a warning so one bad entry never takes
    down the rest of the configuration.
    """
    config = DistributorConfig()
    config_files = find_config_files(config_path)
    if not config_files:
        logger.warning(f"No config files found at {config_path}")
        return config

    for config_file in config_files:
        try:
            with open(config_file, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load config from {config_file}: {e}")
            continue
        if not isinstance(data, dict):
            logger.warning(f"Config file {config_file} is not a mapping, skipping")
            continue

        for item in data.get("providers") or []:
            try:
                config.providers.append(parse_provider(item if isinstance(item, dict) else {}))
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping provider entry in {config_file}: {e}")

        for item in data.get("hostname_overrides") or []:
            try:
                config.hostname_overrides.append(override_from_dict(item if isinstance(item, dict) else {}))
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping hostname override in {config_file}: {e}")

        for item in data.get("preserved_hostnames") or []:
            try:
                config.preserved_hostnames.append(preserved_from_dict(item))
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Skipping preserved hostname in {config_file}: {e}")

    logger.info(
        f"Loaded {len(config.providers)} provider(s), {len(config.hostname_overrides)} override(s), "
        f"{len(config.preserved_hostnames)} preserved hostname(s) from {len(config_files)} file(s)"
    )
    return config
