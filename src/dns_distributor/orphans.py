"""Orphan lifecycle: active -> orphaned -> deleted, with resurrection and preservation.

Status is evaluated lazily: a record becomes eligible for deletion once
``now >= orphaned_at + grace_period`` and is deleted on the next sweep. Each
transition is a read-decide-write under a per-record lock, and the deletion
step re-reads the record right before the destructive provider call.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Set, Union

from dns_distributor.errors import InvalidGraceExtension, RecordNotFound
from dns_distributor.models import DNSRecord, PreservedHostname, RecordStatus, SweepReport
from dns_distributor.overrides import is_hostname_preserved
from dns_distributor.providers import ProviderClient
from dns_distributor.store import RecordStore

logger = logging.getLogger(__name__)

DISCOVERY_SOURCE = "discovery"


def time_remaining(orphaned_at: int, grace_period_minutes: int, now: float) -> float:
    """Seconds until an orphaned record may be deleted; non-positive means eligible."""
    return (orphaned_at + grace_period_minutes * 60) - now


class RecordLocks:
    """Per-record advisory locks."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    @contextmanager
    def hold(self, record_id: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(record_id, threading.Lock())
        with lock:
            yield


class OrphanLifecycleManager:
    def __init__(
        self,
        store: RecordStore,
        clients: Mapping[str, ProviderClient],
        *,
        grace_period_minutes: Union[int, Callable[[], int]] = 15,
        max_extension_minutes: int = 1440,
        cleanup_enabled: Union[bool, Callable[[], bool]] = True,
        preserved: Optional[Callable[[], Sequence[PreservedHostname]]] = None,
        tracked_sources: Iterable[str] = (DISCOVERY_SOURCE,),
        clock: Callable[[], float] = time.time,
        locks: Optional[RecordLocks] = None,
    ):
        self.store = store
        self.clients = clients
        self._grace = grace_period_minutes
        self._cleanup_enabled = cleanup_enabled
        self.max_extension_minutes = max(0, int(max_extension_minutes))
        self._preserved = preserved or store.preserved_hostnames
        self.tracked_sources: Set[str] = set(tracked_sources)
        self._clock = clock
        self.locks = locks or RecordLocks()

    @property
    def grace_period_minutes(self) -> int:
        value = self._grace() if callable(self._grace) else self._grace
        return max(0, int(value))

    @property
    def cleanup_enabled(self) -> bool:
        return bool(self._cleanup_enabled() if callable(self._cleanup_enabled) else self._cleanup_enabled)

    def _now(self, now: Optional[float]) -> int:
        return int(self._clock() if now is None else now)

    def deadline(self, record: DNSRecord) -> Optional[int]:
        if record.orphaned_at is None:
            return None
        return record.orphaned_at + self.grace_period_minutes * 60

    def time_remaining_for(self, record: DNSRecord, now: Optional[float] = None) -> Optional[float]:
        if record.orphaned_at is None:
            return None
        return time_remaining(record.orphaned_at, self.grace_period_minutes, self._now(now))

    def is_preserved(self, hostname: str) -> bool:
        return is_hostname_preserved(self._preserved(), hostname)

    def _tracked(self, record: DNSRecord) -> bool:
        return record.managed and record.source in self.tracked_sources

    # =========================================================================
    # Discovery signals
    # =========================================================================

    def host_absent(self, hostname: str, now: Optional[float] = None) -> List[DNSRecord]:
        """Mark managed, non-preserved active records for hostname as orphaned."""
        ts = self._now(now)
        changed = []
        for record in self._records_for(hostname):
            if record.status != RecordStatus.ACTIVE or not self._tracked(record):
                continue
            if self.is_preserved(record.hostname):
                logger.debug(f"Not orphaning preserved record {record.hostname} ({record.type.value})")
                continue
            updated = self._mark_orphaned(record.id, ts)
            if updated is not None:
                changed.append(updated)
        return changed

    def host_present(self, hostname: str, now: Optional[float] = None) -> List[DNSRecord]:
        """Return orphaned records for hostname to active."""
        ts = self._now(now)
        changed = []
        for record in self._records_for(hostname):
            if record.status != RecordStatus.ORPHANED:
                continue
            updated = self._reactivate(record.id, ts)
            if updated is not None:
                changed.append(updated)
        return changed

    def observe(self, present_hostnames: Iterable[str], now: Optional[float] = None) -> SweepReport:
        """Apply a full discovery snapshot: listed hosts are present, the rest absent."""
        ts = self._now(now)
        present = {h.strip().rstrip(".").lower() for h in present_hostnames if h and h.strip()}
        report = SweepReport()

        for record in self.store.list():
            if not self._tracked(record):
                continue
            hostname = record.hostname.lower()
            if hostname in present:
                if record.status == RecordStatus.ORPHANED and self._reactivate(record.id, ts):
                    report.reactivated.append(record.id)
            elif record.status == RecordStatus.ACTIVE:
                if self.is_preserved(record.hostname):
                    report.preserved.append(record.id)
                    continue
                if self._mark_orphaned(record.id, ts):
                    report.orphaned.append(record.id)
        return report

    def _records_for(self, hostname: str) -> List[DNSRecord]:
        wanted = hostname.strip().rstrip(".").lower()
        return [r for r in self.store.list() if r.hostname.lower() == wanted]

    def _mark_orphaned(self, record_id: str, now: int) -> Optional[DNSRecord]:
        def apply(record: DNSRecord) -> Optional[DNSRecord]:
            if record.status != RecordStatus.ACTIVE:
                return None
            record.status = RecordStatus.ORPHANED
            record.orphaned_at = now
            record.grace_extension_minutes = 0
            record.last_error = ""
            return record

        with self.locks.hold(record_id):
            updated = self.store.update(record_id, apply)
        if updated is not None:
            logger.info(
                f"Marking DNS record as orphaned (will be deleted after {self.grace_period_minutes} "
                f"minutes): {updated.hostname} ({updated.type.value})"
            )
        return updated

    def _reactivate(self, record_id: str, now: int) -> Optional[DNSRecord]:
        def apply(record: DNSRecord) -> Optional[DNSRecord]:
            if record.status == RecordStatus.ACTIVE and record.orphaned_at is None:
                return None
            record.status = RecordStatus.ACTIVE
            record.orphaned_at = None
            record.grace_extension_minutes = 0
            record.last_error = ""
            record.last_synced_at = now
            return record

        with self.locks.hold(record_id):
            updated = self.store.update(record_id, apply)
        if updated is not None:
            logger.info(f"DNS record is active again: {updated.hostname} ({updated.type.value})")
        return updated

    # =========================================================================
    # Sweep
    # =========================================================================

    def sweep(self, now: Optional[float] = None) -> SweepReport:
        """Delete orphaned records whose grace period has elapsed."""
        ts = self._now(now)
        report = SweepReport()
        cleanup = self.cleanup_enabled

        for record in self.store.list(status=RecordStatus.ORPHANED):
            if not record.managed or self.is_preserved(record.hostname):
                if self._reactivate(record.id, ts):
                    report.preserved.append(record.id)
                continue

            remaining = self.time_remaining_for(record, ts)
            if remaining is None or remaining > 0:
                logger.debug(
                    f"Orphaned DNS record {record.hostname} ({record.type.value}) "
                    f"will be deleted in {int((remaining or 0) // 60) + 1} minutes"
                )
                continue

            if not cleanup:
                logger.debug(f"Cleanup disabled, keeping orphaned record {record.hostname}")
                continue

            if self._delete_if_still_due(record.id, ts):
                report.deleted.append(record.id)
            else:
                report.failed.append(record.id)

        if report.deleted or report.failed or report.preserved:
            logger.info(
                f"Orphaned records: {len(report.deleted)} deleted after grace period, "
                f"{len(report.failed)} failed, {len(report.preserved)} preserved"
            )
        return report

    def _delete_if_still_due(self, record_id: str, now: int) -> bool:
        with self.locks.hold(record_id):
            record = self.store.get(record_id)
            if record is None or record.status != RecordStatus.ORPHANED:
                return False
            deadline = self.deadline(record)
            if deadline is None or deadline > now or not record.managed:
                return False
            if self.is_preserved(record.hostname):
                return False

            error = ""
            client = self.clients.get(record.provider_id)
            if client is None:
                error = f"No client configured for provider '{record.provider_id}'"
            elif not record.external_id:
                error = f"No provider record id stored for {record.hostname} on {client.name}"
            else:
                try:
                    if not client.delete(record.external_id):
                        error = f"{client.name} refused to delete the record"
                except Exception as e:
                    error = str(e) or e.__class__.__name__

            if error:
                logger.error(f"Error deleting orphaned record {record.hostname}: {error}")
                self.store.update(record_id, lambda r: _with_error(r, error))
                return False

            self.store.delete(record_id)
            logger.info(
                f"Grace period elapsed, removed orphaned DNS record: "
                f"{record.hostname} ({record.type.value})"
            )
            return True

    # =========================================================================
    # Grace extension
    # =========================================================================

    def extend_grace_period(
        self, record_id: str, minutes: int, now: Optional[float] = None
    ) -> DNSRecord:
        """Push an orphaned record's deadline back by minutes, within the configured maximum."""
        if int(minutes) <= 0:
            raise InvalidGraceExtension(f"Extension must be a positive number of minutes, got {minutes}")

        with self.locks.hold(record_id):
            record = self.store.get(record_id)
            if record is None:
                raise RecordNotFound(record_id)
            if record.status != RecordStatus.ORPHANED or record.orphaned_at is None:
                raise InvalidGraceExtension(
                    f"Record {record.hostname} is {record.status.value}, only orphaned records can be extended"
                )

            allowance = self.max_extension_minutes - record.grace_extension_minutes
            if allowance <= 0:
                raise InvalidGraceExtension(
                    f"Record {record.hostname} already extended by the maximum of "
                    f"{self.max_extension_minutes} minutes"
                )
            applied = min(int(minutes), allowance)
            if applied < int(minutes):
                logger.warning(
                    f"Grace extension for {record.hostname} clamped from {minutes} to {applied} minutes"
                )

            def apply(r: DNSRecord) -> Optional[DNSRecord]:
                if r.status != RecordStatus.ORPHANED or r.orphaned_at is None:
                    return None
                r.orphaned_at += applied * 60
                r.grace_extension_minutes += applied
                return r

            updated = self.store.update(record_id, apply)
            if updated is None:
                raise InvalidGraceExtension(f"Record {record_id} is no longer orphaned")

        remaining = self.time_remaining_for(updated, now)
        logger.info(
            f"Extended grace period of {updated.hostname} by {applied} minutes "
            f"({int((remaining or 0) // 60)} minutes remaining)"
        )
        return updated


def _with_error(record: DNSRecord, error: str) -> DNSRecord:
    record.last_error = error
    return record
