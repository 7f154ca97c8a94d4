"""Hostname pattern matching and layered override resolution.

Each record field resolves independently by walking an ordered list of
precedence layers and taking the first non-None value:

    1. explicit call-site value
    2. matching enabled hostname override
    3. provider default
    4. global default setting

Layers are plain lookup callables, so resolution never reads ambient state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from dns_distributor.errors import MissingFieldError
from dns_distributor.models import (
    EffectiveSpec,
    FieldSource,
    HostnameOverride,
    PreservedHostname,
    Provider,
    RecordType,
)

logger = logging.getLogger(__name__)

FIELD_RECORD_TYPE = "record_type"
FIELD_CONTENT = "content"
FIELD_TTL = "ttl"
FIELD_PROXIED = "proxied"
FIELD_PROVIDER_ID = "provider_id"

# Longer than any legal DNS name, so an exact match outranks every wildcard.
EXACT_MATCH_SCORE = 1000

T = TypeVar("T")

# =============================================================================
# Hostname Pattern Matching
# =============================================================================


def _normalize_hostname(hostname: str) -> str:
    return (hostname or "").strip().rstrip(".").lower()


def match_hostname_pattern(pattern: str, hostname: str) -> Optional[int]:
    """Return the specificity score of pattern against hostname, or None.

    ``*.example.com`` matches names strictly below example.com and scores the
    length of its suffix; a literal pattern matches only itself and scores
    EXACT_MATCH_SCORE.
    """
    pattern_norm = _normalize_hostname(pattern)
    host = _normalize_hostname(hostname)
    if not pattern_norm or not host:
        return None

    if pattern_norm.startswith("*."):
        suffix = pattern_norm[1:]
        if host.endswith(suffix) and len(host) > len(suffix):
            return len(suffix)
        return None

    if pattern_norm == host:
        return EXACT_MATCH_SCORE
    return None


def best_match(
    items: Iterable[T], hostname: str, pattern_of: Callable[[T], str]
) -> Optional[T]:
    """Pick the most specific matching item; ties go to the earliest declared."""
    chosen: Optional[T] = None
    chosen_score = -1
    for item in items:
        score = match_hostname_pattern(pattern_of(item), hostname)
        if score is not None and score > chosen_score:
            chosen = item
            chosen_score = score
    return chosen


def find_hostname_override(
    overrides: Sequence[HostnameOverride],
    hostname: str,
    provider_id: Optional[str] = None,
) -> Optional[HostnameOverride]:
    """Find the enabled override that applies to hostname.

    Disabled overrides are ignored entirely. Overrides pinned to another
    provider do not apply when provider_id is given.
    """
    candidates = [o for o in overrides if o.enabled]
    if provider_id is not None:
        candidates = [o for o in candidates if not o.provider_id or o.provider_id == provider_id]
    return best_match(candidates, hostname, lambda o: o.hostname)


def is_hostname_preserved(preserved: Sequence[PreservedHostname], hostname: str) -> bool:
    return best_match(preserved, hostname, lambda p: p.hostname) is not None


# =============================================================================
# Precedence Layers
# =============================================================================

FieldLookup = Callable[[str, RecordType], Any]


@dataclass(frozen=True)
class PrecedenceLayer:
    source: FieldSource
    lookup: FieldLookup


def explicit_layer(values: Dict[str, Any]) -> PrecedenceLayer:
    frozen = dict(values)
    return PrecedenceLayer(FieldSource.EXPLICIT, lambda name, _type: frozen.get(name))


def hostname_override_layer(override: Optional[HostnameOverride]) -> PrecedenceLayer:
    def lookup(name: str, _type: RecordType) -> Any:
        if override is None:
            return None
        return getattr(override, name, None)

    return PrecedenceLayer(FieldSource.HOSTNAME_OVERRIDE, lookup)


def provider_layer(provider: Optional[Provider]) -> PrecedenceLayer:
    def lookup(name: str, _type: RecordType) -> Any:
        if provider is None:
            return None
        if name == FIELD_PROVIDER_ID:
            return provider.id
        return getattr(provider.defaults, name, None)

    return PrecedenceLayer(FieldSource.PROVIDER, lookup)


def global_layer(lookup: FieldLookup) -> PrecedenceLayer:
    return PrecedenceLayer(FieldSource.GLOBAL, lookup)


# =============================================================================
# Override Resolver
# =============================================================================


class OverrideResolver:
    """Merges precedence layers into one effective spec per hostname."""

    def resolve(
        self,
        hostname: str,
        record_type: RecordType,
        fields: Iterable[str],
        layers: Sequence[PrecedenceLayer],
        required: Optional[Iterable[str]] = None,
    ) -> EffectiveSpec:
        field_list: List[str] = list(fields)
        required_set = set(field_list if required is None else required)

        values: List[Tuple[str, Any]] = []
        sources: List[Tuple[str, FieldSource]] = []
        for name in field_list:
            for layer in layers:
                value = layer.lookup(name, record_type)
                if value is not None:
                    values.append((name, value))
                    sources.append((name, layer.source))
                    break
            else:
                if name in required_set:
                    raise MissingFieldError(name, hostname)
                logger.debug(f"Optional field '{name}' unresolved for {hostname}")

        return EffectiveSpec(values=tuple(values), sources=tuple(sources))
