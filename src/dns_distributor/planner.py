"""Distribution planner: one logical record intent to per-provider record specs."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from dns_distributor.errors import CapabilityViolation, MissingFieldError
from dns_distributor.models import (
    HOSTNAME_CONTENT_TYPES,
    PROXIABLE_TYPES,
    GlobalDefaults,
    HostnameOverride,
    Plan,
    PlanError,
    Provider,
    ProviderRecordSpec,
    ProviderTarget,
    RecordIntent,
    RecordType,
)
from dns_distributor.overrides import (
    FIELD_CONTENT,
    FIELD_PROXIED,
    FIELD_RECORD_TYPE,
    FIELD_TTL,
    OverrideResolver,
    PrecedenceLayer,
    explicit_layer,
    find_hostname_override,
    global_layer,
    hostname_override_layer,
    provider_layer,
)
from dns_distributor.ttl import clamp_for_validation, effective_ttl
from dns_distributor.zones import ZoneCatalog, convert_content, convert_hostname, normalize_zone

logger = logging.getLogger(__name__)

PLANNED_FIELDS = (FIELD_RECORD_TYPE, FIELD_CONTENT, FIELD_TTL, FIELD_PROXIED)
REQUIRED_FIELDS = (FIELD_RECORD_TYPE, FIELD_CONTENT, FIELD_TTL)


class DistributionPlanner:
    """Resolves a RecordIntent into one ProviderRecordSpec per valid target.

    Planning is pure: no I/O, no mutation of its inputs. Problems with one
    target become PlanErrors and never block the other targets.
    """

    def __init__(
        self,
        *,
        overrides: Sequence[HostnameOverride] = (),
        defaults: Optional[GlobalDefaults] = None,
        resolver: Optional[OverrideResolver] = None,
    ):
        self.overrides = tuple(overrides)
        self.defaults = defaults or GlobalDefaults()
        self.resolver = resolver or OverrideResolver()

    def plan(self, intent: RecordIntent, providers: Iterable[Provider]) -> Plan:
        catalog = providers if isinstance(providers, ZoneCatalog) else ZoneCatalog(providers)

        base_zone = catalog.zone_of(intent.base_hostname)
        content_zone: Optional[str] = None
        if intent.record_type in HOSTNAME_CONTENT_TYPES and intent.base_content:
            content_zone = catalog.content_zone(intent.base_content)

        specs: List[ProviderRecordSpec] = []
        errors: List[PlanError] = []
        seen: Set[str] = set()

        for target in intent.targets:
            provider_id = target.provider_id
            if provider_id in seen:
                errors.append(PlanError(provider_id, "Provider selected more than once"))
                continue
            seen.add(provider_id)

            provider = catalog.get(provider_id)
            if provider is None:
                errors.append(PlanError(provider_id, f"Unknown provider '{provider_id}'"))
                continue
            if not provider.enabled:
                errors.append(PlanError(provider_id, f"Provider '{provider.name}' is disabled"))
                continue

            try:
                spec = self._plan_target(intent, target, provider, base_zone, content_zone)
            except (MissingFieldError, CapabilityViolation) as e:
                logger.warning(f"Skipping {provider.name} for {intent.base_hostname}: {e}")
                errors.append(PlanError(provider_id, str(e)))
                continue

            logger.debug(
                f"Planned {spec.record_type.value} {spec.hostname} -> {spec.content} "
                f"(ttl={spec.ttl}) on {provider.name}"
            )
            specs.append(spec)

        return Plan(specs=tuple(specs), errors=tuple(errors))

    def _plan_target(
        self,
        intent: RecordIntent,
        target: ProviderTarget,
        provider: Provider,
        base_zone: Optional[str],
        content_zone: Optional[str],
    ) -> ProviderRecordSpec:
        hostname = self._resolve_hostname(intent, target, provider, base_zone)
        explicit_content = self._resolve_content(intent, target, provider, content_zone)

        override = find_hostname_override(self.overrides, hostname, provider.id)
        if override is None and hostname.lower() != intent.base_hostname.lower():
            override = find_hostname_override(self.overrides, intent.base_hostname, provider.id)

        layers: List[PrecedenceLayer] = [
            explicit_layer(
                {
                    FIELD_RECORD_TYPE: intent.record_type,
                    FIELD_CONTENT: explicit_content,
                    FIELD_TTL: target.ttl_override,
                    FIELD_PROXIED: target.proxied_override,
                }
            ),
            hostname_override_layer(override),
            provider_layer(provider),
            global_layer(self._global_lookup(provider)),
        ]
        effective = self.resolver.resolve(
            hostname, intent.record_type, PLANNED_FIELDS, layers, required=REQUIRED_FIELDS
        )

        record_type = RecordType.parse(effective.get(FIELD_RECORD_TYPE))
        ttl = int(effective.get(FIELD_TTL))
        caps = provider.capabilities

        proxied: Optional[bool] = None
        if caps.supports_proxied and record_type in PROXIABLE_TYPES:
            proxied = bool(effective.get(FIELD_PROXIED, False))

        if record_type not in caps.supported_record_types:
            raise CapabilityViolation(
                provider.id, f"{provider.name} does not support {record_type.value} records"
            )
        check = clamp_for_validation(ttl, caps)
        if not check.ok:
            raise CapabilityViolation(
                provider.id,
                f"TTL {ttl} for {provider.name} must be between {caps.ttl_min} and {caps.ttl_max} "
                f"(nearest allowed: {check.clamped})",
            )

        return ProviderRecordSpec(
            provider_id=provider.id,
            hostname=hostname,
            record_type=record_type,
            content=str(effective.get(FIELD_CONTENT)),
            ttl=ttl,
            proxied=proxied,
        )

    def _resolve_hostname(
        self,
        intent: RecordIntent,
        target: ProviderTarget,
        provider: Provider,
        base_zone: Optional[str],
    ) -> str:
        if target.hostname_override:
            return target.hostname_override
        if base_zone and provider.zone and normalize_zone(provider.zone) != normalize_zone(base_zone):
            return convert_hostname(intent.base_hostname, base_zone, provider.zone)
        return intent.base_hostname

    def _resolve_content(
        self,
        intent: RecordIntent,
        target: ProviderTarget,
        provider: Provider,
        content_zone: Optional[str],
    ) -> Optional[str]:
        if target.content_override:
            return target.content_override
        if not intent.base_content:
            return None
        if (
            content_zone
            and provider.zone
            and normalize_zone(provider.zone) != normalize_zone(content_zone)
        ):
            return convert_content(intent.record_type, intent.base_content, content_zone, provider.zone)
        return intent.base_content

    def _global_lookup(self, provider: Provider):
        defaults = self.defaults

        def lookup(name: str, _type: RecordType) -> Any:
            if name == FIELD_TTL:
                return effective_ttl(provider.capabilities, defaults.ttl, defaults.ttl_override)
            if name == FIELD_CONTENT:
                return defaults.content or None
            if name == FIELD_PROXIED:
                return defaults.proxied
            if name == FIELD_RECORD_TYPE:
                return defaults.record_type
            return None

        return lookup


def targets_from_overrides(
    provider_ids: Iterable[str], overrides: Optional[Dict[str, Dict[str, Any]]] = None
) -> Tuple[ProviderTarget, ...]:
    """Build immutable ProviderTargets from a provider-id keyed override mapping."""
    overrides = overrides or {}
    targets = []
    for provider_id in provider_ids:
        item = overrides.get(provider_id) or {}
        targets.append(
            ProviderTarget(
                provider_id=provider_id,
                hostname_override=item.get("hostname") or None,
                content_override=item.get("content") or None,
                ttl_override=int(item["ttl"]) if item.get("ttl") is not None else None,
                proxied_override=bool(item["proxied"]) if item.get("proxied") is not None else None,
            )
        )
    return tuple(targets)
