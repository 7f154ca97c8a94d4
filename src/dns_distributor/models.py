"""Data types shared by the distribution engine and the orphan lifecycle."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

# =============================================================================
# Enums
# =============================================================================


class RecordType(Enum):
    """DNS record types the engine knows how to plan."""

    A = "A"
    AAAA = "AAAA"
    CNAME = "CNAME"
    MX = "MX"
    TXT = "TXT"
    SRV = "SRV"
    CAA = "CAA"
    NS = "NS"
    PTR = "PTR"

    @classmethod
    def parse(cls, value: Any) -> "RecordType":
        if isinstance(value, RecordType):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"Unsupported record type: {value!r}") from None


# Record types whose content is itself a hostname.
HOSTNAME_CONTENT_TYPES: FrozenSet[RecordType] = frozenset(
    {RecordType.CNAME, RecordType.NS, RecordType.MX, RecordType.SRV, RecordType.PTR}
)

# Record types that may be proxied by providers that support proxying.
PROXIABLE_TYPES: FrozenSet[RecordType] = frozenset(
    {RecordType.A, RecordType.AAAA, RecordType.CNAME}
)


class RecordStatus(Enum):
    """Orphan lifecycle state of a persisted record."""

    ACTIVE = "active"
    ORPHANED = "orphaned"
    ERROR = "error"


class CreateOutcome(Enum):
    CREATED = "created"
    DUPLICATE = "duplicate"
    FAILED = "failed"


class ClampBound(Enum):
    """Which provider TTL bound a value was clamped to."""

    NONE = "none"
    MIN = "min"
    MAX = "max"


class SettingSource(Enum):
    DATABASE = "database"
    ENV = "env"
    DEFAULT = "default"


class FieldSource(Enum):
    """Precedence layer that supplied a resolved field."""

    EXPLICIT = "explicit"
    HOSTNAME_OVERRIDE = "hostname-override"
    PROVIDER = "provider"
    GLOBAL = "global"


# =============================================================================
# Providers
# =============================================================================


@dataclass(frozen=True)
class ProviderCapabilities:
    """What a provider backend accepts."""

    supported_record_types: FrozenSet[RecordType]
    ttl_min: int
    ttl_max: int
    ttl_default: int
    supports_proxied: bool = False

    def __post_init__(self) -> None:
        if not self.ttl_min <= self.ttl_default <= self.ttl_max:
            raise ValueError(
                f"Invalid TTL bounds: expected ttl_min <= ttl_default <= ttl_max, "
                f"got {self.ttl_min} <= {self.ttl_default} <= {self.ttl_max}"
            )


@dataclass(frozen=True)
class ProviderDefaults:
    """Per-provider record defaults, consulted after hostname overrides."""

    record_type: Optional[RecordType] = None
    content: Optional[str] = None
    ttl: Optional[int] = None
    proxied: Optional[bool] = None


@dataclass(frozen=True)
class Provider:
    id: str
    name: str
    type: str
    zone: str
    capabilities: ProviderCapabilities
    enabled: bool = True
    defaults: ProviderDefaults = field(default_factory=ProviderDefaults)
    settings: Tuple[Tuple[str, str], ...] = ()

    def setting(self, key: str, default: str = "") -> str:
        """Return a backend-specific connection setting (url, username, ...)."""
        return dict(self.settings).get(key, default)


# =============================================================================
# Intents and plans
# =============================================================================


@dataclass(frozen=True)
class ProviderTarget:
    """One provider selected for a record intent, with optional manual overrides."""

    provider_id: str
    hostname_override: Optional[str] = None
    content_override: Optional[str] = None
    ttl_override: Optional[int] = None
    proxied_override: Optional[bool] = None


@dataclass(frozen=True)
class RecordIntent:
    """The logical record an operator (or discovery) asked for.

    ``targets`` is a tuple so the per-provider override mapping stays immutable
    while a plan is being computed.
    """

    base_hostname: str
    record_type: RecordType
    base_content: str
    targets: Tuple[ProviderTarget, ...]
    preserve_requested: bool = False


@dataclass(frozen=True)
class ProviderRecordSpec:
    """A concrete record ready to be submitted to one provider."""

    provider_id: str
    hostname: str
    record_type: RecordType
    content: str
    ttl: int
    proxied: Optional[bool] = None


@dataclass(frozen=True)
class PlanError:
    provider_id: str
    reason: str


@dataclass(frozen=True)
class Plan:
    specs: Tuple[ProviderRecordSpec, ...] = ()
    errors: Tuple[PlanError, ...] = ()


# =============================================================================
# Execution results
# =============================================================================


@dataclass(frozen=True)
class CreateResult:
    """Outcome of a single provider create call."""

    outcome: CreateOutcome
    external_id: str = ""
    error: str = ""


@dataclass(frozen=True)
class PerTargetResult:
    provider_id: str
    hostname: str
    status: CreateOutcome
    provider_name: str = ""
    external_id: str = ""
    error: str = ""
    spec: Optional[ProviderRecordSpec] = None


@dataclass(frozen=True)
class MultiCreateResult:
    results: Tuple[PerTargetResult, ...] = ()

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def created(self) -> int:
        return sum(1 for r in self.results if r.status == CreateOutcome.CREATED)

    @property
    def duplicates(self) -> int:
        return sum(1 for r in self.results if r.status == CreateOutcome.DUPLICATE)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.status == CreateOutcome.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "created": self.created,
            "duplicates": self.duplicates,
            "failed": self.failed,
            "results": [
                {
                    "providerId": r.provider_id,
                    "providerName": r.provider_name,
                    "hostname": r.hostname,
                    "status": r.status.value,
                    "error": r.error,
                }
                for r in self.results
            ],
        }


# =============================================================================
# Persisted entities
# =============================================================================


@dataclass(frozen=True)
class HostnameOverride:
    """Operator-managed per-hostname settings (literal or ``*.domain``)."""

    hostname: str
    proxied: Optional[bool] = None
    ttl: Optional[int] = None
    record_type: Optional[RecordType] = None
    content: Optional[str] = None
    provider_id: Optional[str] = None
    reason: str = ""
    enabled: bool = True


@dataclass(frozen=True)
class PreservedHostname:
    hostname: str
    reason: str = ""


@dataclass
class DNSRecord:
    """A record tracked by the engine. Mutated only through the record store."""

    id: str
    hostname: str
    type: RecordType
    content: str
    ttl: int
    provider_id: str
    proxied: Optional[bool] = None
    managed: bool = True
    status: RecordStatus = RecordStatus.ACTIVE
    orphaned_at: Optional[int] = None
    source: str = "api"
    last_synced_at: int = 0
    external_id: str = ""
    grace_extension_minutes: int = 0
    last_error: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "hostname": self.hostname,
            "type": self.type.value,
            "content": self.content,
            "ttl": self.ttl,
            "provider_id": self.provider_id,
            "proxied": self.proxied,
            "managed": self.managed,
            "status": self.status.value,
            "orphaned_at": self.orphaned_at,
            "source": self.source,
            "last_synced_at": self.last_synced_at,
            "external_id": self.external_id,
            "grace_extension_minutes": self.grace_extension_minutes,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DNSRecord":
        orphaned_at = data.get("orphaned_at")
        return cls(
            id=str(data["id"]),
            hostname=str(data["hostname"]),
            type=RecordType.parse(data["type"]),
            content=str(data.get("content") or ""),
            ttl=int(data.get("ttl") or 0),
            provider_id=str(data["provider_id"]),
            proxied=data.get("proxied"),
            managed=bool(data.get("managed", True)),
            status=RecordStatus(data.get("status") or RecordStatus.ACTIVE.value),
            orphaned_at=int(orphaned_at) if orphaned_at is not None else None,
            source=str(data.get("source") or "api"),
            last_synced_at=int(data.get("last_synced_at") or 0),
            external_id=str(data.get("external_id") or ""),
            grace_extension_minutes=int(data.get("grace_extension_minutes") or 0),
            last_error=str(data.get("last_error") or ""),
        )


@dataclass(frozen=True)
class GlobalDefaults:
    """Global record defaults, the last precedence layer."""

    ttl: int = 300
    ttl_override: bool = False
    proxied: bool = False
    record_type: RecordType = RecordType.CNAME
    content: str = ""


@dataclass(frozen=True)
class ResolvedSetting:
    key: str
    value: Any
    source: SettingSource


@dataclass(frozen=True)
class EffectiveSpec:
    """Per-field result of override resolution, with the layer each value came from."""

    values: Tuple[Tuple[str, Any], ...]
    sources: Tuple[Tuple[str, FieldSource], ...]

    def get(self, name: str, default: Any = None) -> Any:
        return dict(self.values).get(name, default)

    def source_of(self, name: str) -> Optional[FieldSource]:
        return dict(self.sources).get(name)


@dataclass
class SweepReport:
    orphaned: List[str] = field(default_factory=list)
    reactivated: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    preserved: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
