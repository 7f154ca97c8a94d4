"""Zone catalog and zone-to-zone value conversion."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from dns_distributor.models import HOSTNAME_CONTENT_TYPES, Provider, RecordType

logger = logging.getLogger(__name__)

# =============================================================================
# Zone Matching
# =============================================================================


def normalize_zone(zone: str) -> str:
    return (zone or "").strip().rstrip(".").lower()


def belongs_to_zone(value: str, zone: str) -> bool:
    """Check if value is the zone apex or a name below it (case-insensitive)."""
    zone_norm = normalize_zone(zone)
    if not value or not zone_norm:
        return False
    value_norm = value.strip().rstrip(".").lower()
    return value_norm == zone_norm or value_norm.endswith(f".{zone_norm}")


# =============================================================================
# Zone Conversion
# =============================================================================


def convert_hostname(value: str, source_zone: str, target_zone: str) -> str:
    """Re-anchor value from source_zone to target_zone.

    The subdomain prefix keeps its letter case. Values outside source_zone are
    returned unchanged; this never raises.
    """
    if not value or not source_zone or not target_zone:
        return value

    trailing_dot = value.endswith(".")
    bare = value[:-1] if trailing_dot else value
    source = source_zone.strip().rstrip(".")
    target = target_zone.strip().rstrip(".")

    if bare.lower() == source.lower():
        converted = target
    elif bare.lower().endswith(f".{source.lower()}"):
        converted = bare[: len(bare) - len(source)] + target
    else:
        logger.debug(f"No zone conversion for '{value}': not in zone '{source_zone}'")
        return value

    return f"{converted}." if trailing_dot else converted


def convert_content(
    record_type: RecordType, value: str, source_zone: str, target_zone: str
) -> str:
    """Convert record content only when the record type's content is a hostname."""
    if record_type not in HOSTNAME_CONTENT_TYPES:
        return value
    return convert_hostname(value, source_zone, target_zone)


# =============================================================================
# Zone Catalog
# =============================================================================


class ZoneCatalog:
    """Read-only view of configured providers and the zone each one owns."""

    def __init__(self, providers: Iterable[Provider]):
        self._providers: Dict[str, Provider] = {}
        for provider in providers:
            if provider.id in self._providers:
                logger.warning(f"Duplicate provider id '{provider.id}', keeping first definition")
                continue
            self._providers[provider.id] = provider

    def __len__(self) -> int:
        return len(self._providers)

    @property
    def providers(self) -> List[Provider]:
        return list(self._providers.values())

    def get(self, provider_id: str) -> Optional[Provider]:
        return self._providers.get(provider_id)

    def zones(self) -> List[str]:
        return sorted({normalize_zone(p.zone) for p in self._providers.values() if p.zone})

    def zone_of(self, value: str) -> Optional[str]:
        """Return the longest configured zone that value belongs to."""
        matches = [p.zone for p in self._providers.values() if belongs_to_zone(value, p.zone)]
        if not matches:
            return None
        return max(matches, key=lambda z: len(normalize_zone(z)))

    def content_zone(self, value: str) -> Optional[str]:
        """Return the single zone that a content value belongs to.

        Content matching more than one distinct zone is ambiguous and is not
        converted; callers get None and a warning is logged.
        """
        matches = sorted(
            {normalize_zone(p.zone) for p in self._providers.values() if belongs_to_zone(value, p.zone)}
        )
        if not matches:
            return None
        if len(matches) > 1:
            logger.warning(
                f"Content '{value}' matches multiple zones {matches}; "
                f"leaving it unconverted, confirm the intended target manually"
            )
            return None
        return matches[0]
