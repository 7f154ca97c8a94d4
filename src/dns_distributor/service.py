"""Operations exposed to the API layer: multi-provider create, grace extension, settings."""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from dns_distributor.errors import RecordNotFound
from dns_distributor.executor import FanOutExecutor
from dns_distributor.models import (
    CreateOutcome,
    DNSRecord,
    HostnameOverride,
    MultiCreateResult,
    PerTargetResult,
    Plan,
    PlanError,
    PreservedHostname,
    ProviderTarget,
    RecordIntent,
    RecordStatus,
    RecordType,
    ResolvedSetting,
)
from dns_distributor.orphans import OrphanLifecycleManager
from dns_distributor.planner import DistributionPlanner, targets_from_overrides
from dns_distributor.providers import ProviderClient
from dns_distributor.settings import DistributorConfig, SettingsStore
from dns_distributor.store import RecordStore
from dns_distributor.zones import ZoneCatalog

logger = logging.getLogger(__name__)

API_SOURCE = "api"


@dataclass(frozen=True)
class MultiCreateDNSRecordInput:
    base_hostname: str
    type: RecordType
    content: str
    providers: Tuple[ProviderTarget, ...]
    preserved: bool = False
    source: str = API_SOURCE

    def to_intent(self) -> RecordIntent:
        return RecordIntent(
            base_hostname=self.base_hostname.strip(),
            record_type=self.type,
            base_content=self.content.strip(),
            targets=self.providers,
            preserve_requested=self.preserved,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MultiCreateDNSRecordInput":
        """Parse the API payload (camelCase or snake_case keys).

        Providers are ids or dicts carrying per-provider values; a
        ``providerOverrides`` map keyed by provider id is accepted as well.
        """
        hostname = data.get("baseHostname") or data.get("base_hostname") or data.get("hostname")
        if not hostname:
            raise ValueError("baseHostname is required")

        overrides = data.get("providerOverrides") or data.get("provider_overrides") or {}
        if not isinstance(overrides, dict):
            raise ValueError("providerOverrides must map provider ids to values")
        overrides = {str(k): dict(v or {}) for k, v in overrides.items()}

        provider_ids = []
        for item in data.get("providers") or []:
            if isinstance(item, str):
                item = {"providerId": item}
            provider_id = item.get("providerId") or item.get("provider_id")
            if not provider_id:
                raise ValueError(f"provider entry without providerId: {item!r}")
            provider_id = str(provider_id)
            provider_ids.append(provider_id)
            inline = {k: v for k, v in item.items() if k in ("hostname", "content", "ttl", "proxied")}
            if inline:
                overrides[provider_id] = {**overrides.get(provider_id, {}), **inline}
        if not provider_ids:
            raise ValueError("At least one provider is required")

        return cls(
            base_hostname=str(hostname),
            type=RecordType.parse(data.get("type") or "A"),
            content=str(data.get("content") or ""),
            providers=targets_from_overrides(provider_ids, overrides),
            preserved=bool(data.get("preserved", False)),
            source=str(data.get("source") or API_SOURCE),
        )


@dataclass
class OrphanedRecordView:
    record: DNSRecord
    deadline: Optional[int]
    seconds_remaining: Optional[float]
    overdue: bool = field(default=False)


class DistributionService:
    def __init__(
        self,
        *,
        config: DistributorConfig,
        store: RecordStore,
        settings: SettingsStore,
        clients: Mapping[str, ProviderClient],
        max_workers: int = 4,
        max_extension_minutes: int = 1440,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.store = store
        self.settings = settings
        self.clients = dict(clients)
        self.catalog = ZoneCatalog(config.providers)
        self.executor = FanOutExecutor(self.clients, max_workers=max_workers)
        self._clock = clock
        self.lifecycle = OrphanLifecycleManager(
            store,
            self.clients,
            grace_period_minutes=settings.grace_period_minutes,
            max_extension_minutes=max_extension_minutes,
            cleanup_enabled=lambda: bool(settings.value("cleanup_orphaned")),
            preserved=self.preserved_hostnames,
            clock=clock,
        )
        self.check_client_capabilities()

    def check_client_capabilities(self) -> Dict[str, List[str]]:
        """Return, per provider, configured record types its client does not accept."""
        mismatches: Dict[str, List[str]] = {}
        for provider in self.catalog.providers:
            client = self.clients.get(provider.id)
            if client is None:
                continue
            accepted = client.capabilities().supported_record_types
            unsupported = sorted(t.value for t in provider.capabilities.supported_record_types - accepted)
            if unsupported:
                mismatches[provider.id] = unsupported
                logger.warning(
                    f"Provider '{provider.id}' is configured for {', '.join(unsupported)} records "
                    f"which {client.name} does not accept"
                )
        return mismatches

    def hostname_overrides(self) -> List[HostnameOverride]:
        # Stored overrides are operator edits and come first, so they win ties.
        return self.store.hostname_overrides() + list(self.config.hostname_overrides)

    def preserved_hostnames(self) -> List[PreservedHostname]:
        return self.store.preserved_hostnames() + list(self.config.preserved_hostnames)

    def planner(self) -> DistributionPlanner:
        return DistributionPlanner(
            overrides=self.hostname_overrides(),
            defaults=self.settings.global_defaults(),
        )

    def plan(self, intent: RecordIntent) -> Plan:
        return self.planner().plan(intent, self.catalog)

    def multi_create(
        self, data: MultiCreateDNSRecordInput, source: Optional[str] = None
    ) -> MultiCreateResult:
        """Plan and create one logical record on every selected provider.

        Every requested target appears in the result: plan errors are reported
        as failed targets next to the provider outcomes. Records are tracked
        under source, or the input's own source when none is given; only
        discovery-sourced records are orphaned when their host disappears.
        """
        source = source or data.source
        intent = data.to_intent()
        plan = self.plan(intent)
        executed = self.executor.execute(plan.specs)
        now = int(self._clock())

        executed_by_provider: Dict[str, PerTargetResult] = {r.provider_id: r for r in executed.results}
        errors_by_provider: Dict[str, List[PlanError]] = {}
        for error in plan.errors:
            errors_by_provider.setdefault(error.provider_id, []).append(error)

        # One entry per requested target: the first occurrence of a provider
        # takes its executed result, later occurrences take their plan error.
        ordered: List[PerTargetResult] = []
        for target in intent.targets:
            result = executed_by_provider.pop(target.provider_id, None)
            if result is None:
                pending = errors_by_provider.get(target.provider_id)
                if not pending:
                    continue
                result = self._failed_target(intent, pending.pop(0))
            ordered.append(result)

        for result in executed.results:
            if result.spec is None or result.status == CreateOutcome.FAILED:
                continue
            self._track(result, source, now)
            if intent.preserve_requested:
                added = self.store.add_preserved(
                    PreservedHostname(result.spec.hostname, reason="Preserved on creation")
                )
                if added:
                    logger.info(f"Preserving hostname {result.spec.hostname}")

        outcome = MultiCreateResult(results=tuple(ordered))
        logger.info(
            f"Created {intent.base_hostname} ({intent.record_type.value}): {outcome.created} created, "
            f"{outcome.duplicates} duplicate, {outcome.failed} failed of {outcome.total}"
        )
        return outcome

    def _failed_target(self, intent: RecordIntent, error: PlanError) -> PerTargetResult:
        provider = self.catalog.get(error.provider_id)
        return PerTargetResult(
            provider_id=error.provider_id,
            hostname=intent.base_hostname,
            status=CreateOutcome.FAILED,
            provider_name=provider.name if provider else "",
            error=error.reason,
        )

    def _track(self, result: PerTargetResult, source: str, now: int) -> None:
        spec = result.spec
        existing = self.store.find(spec.hostname, spec.provider_id, spec.record_type)
        if result.status == CreateOutcome.DUPLICATE:
            if existing is not None:
                self.store.update(existing.id, lambda r: _touch(r, now))
            return

        record = DNSRecord(
            id=existing.id if existing else uuid.uuid4().hex,
            hostname=spec.hostname,
            type=spec.record_type,
            content=spec.content,
            ttl=spec.ttl,
            provider_id=spec.provider_id,
            proxied=spec.proxied,
            managed=True,
            status=RecordStatus.ACTIVE,
            source=source,
            last_synced_at=now,
            external_id=result.external_id or "",
        )
        self.store.upsert(record)

    def extend_grace_period(self, record_id: str, minutes: int) -> DNSRecord:
        return self.lifecycle.extend_grace_period(record_id, minutes)

    def resolve_setting(self, key: str) -> ResolvedSetting:
        return self.settings.resolve(key)

    def time_remaining_for(self, record_id: str) -> Optional[float]:
        record = self.store.get(record_id)
        if record is None:
            raise RecordNotFound(record_id)
        return self.lifecycle.time_remaining_for(record)

    # Operator edits

    def set_hostname_override(self, override: HostnameOverride) -> HostnameOverride:
        saved = self.store.save_override(override)
        logger.info(f"Saved hostname override for {saved.hostname}")
        return saved

    def delete_hostname_override(self, hostname: str) -> bool:
        removed = self.store.delete_override(hostname)
        if removed:
            logger.info(f"Removed hostname override for {hostname}")
        return removed

    def preserve_hostname(self, hostname: str, reason: str = "") -> bool:
        added = self.store.add_preserved(PreservedHostname(hostname.strip().lower(), reason=reason))
        if added:
            logger.info(f"Preserving hostname {hostname}")
        return added

    def unpreserve_hostname(self, hostname: str) -> bool:
        """Stop preserving hostname; entries from the config file cannot be removed here."""
        removed = self.store.delete_preserved(hostname)
        if removed:
            logger.info(f"No longer preserving hostname {hostname}")
        return removed

    def list_orphaned(self) -> List[OrphanedRecordView]:
        """Orphaned records with their deadlines, including ones stuck past the deadline."""
        now = self._clock()
        views = []
        for record in self.store.list(status=RecordStatus.ORPHANED):
            remaining = self.lifecycle.time_remaining_for(record, now)
            views.append(
                OrphanedRecordView(
                    record=record,
                    deadline=self.lifecycle.deadline(record),
                    seconds_remaining=remaining,
                    overdue=remaining is not None and remaining <= 0,
                )
            )
        return views


def _touch(record: DNSRecord, now: int) -> DNSRecord:
    record.last_synced_at = now
    return record
