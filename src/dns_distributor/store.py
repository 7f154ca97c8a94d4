"""JSON-file persistence for records, overrides, preserved hostnames and settings."""

from __future__ import annotations

import fcntl
import json
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

from dns_distributor.models import (
    DNSRecord,
    HostnameOverride,
    PreservedHostname,
    RecordStatus,
    RecordType,
)

logger = logging.getLogger(__name__)

STATE_VERSION = 1

# =============================================================================
# State File
# =============================================================================


def _default_state() -> Dict[str, Any]:
    return {
        "version": STATE_VERSION,
        "records": {},
        "hostname_overrides": [],
        "preserved_hostnames": [],
        "settings": {},
    }


class StateStore:
    def __init__(self, path: str):
        self.path = Path(path)
        self.lock_path = self.path.with_suffix(self.path.suffix + ".lock")

    @contextmanager
    def locked(self, exclusive: bool = True) -> Iterator[None]:
        """Hold an advisory lock on the sidecar lock file, shared across processes."""
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.lock_path, "a") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return _default_state()
        try:
            state = json.loads(self.path.read_text("utf-8"))
        except Exception as e:
            logger.warning(f"Failed to load state file {self.path}: {e}")
            return _default_state()
        if not isinstance(state, dict):
            logger.warning(f"Ignoring state file {self.path}: expected a JSON object")
            return _default_state()
        for key, value in _default_state().items():
            state.setdefault(key, value)
        return state

    def save(self, state: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(state, indent=2, sort_keys=True), "utf-8")
        tmp_path.replace(self.path)


# =============================================================================
# Entity Serialization
# =============================================================================


def override_to_dict(override: HostnameOverride) -> Dict[str, Any]:
    return {
        "hostname": override.hostname,
        "proxied": override.proxied,
        "ttl": override.ttl,
        "record_type": override.record_type.value if override.record_type else None,
        "content": override.content,
        "provider_id": override.provider_id,
        "reason": override.reason,
        "enabled": override.enabled,
    }


def override_from_dict(data: Dict[str, Any]) -> HostnameOverride:
    hostname = str(data.get("hostname") or "").strip()
    if not hostname:
        raise ValueError("hostname override requires a hostname")
    ttl = data.get("ttl")
    record_type = data.get("record_type") or data.get("type")
    proxied = data.get("proxied")
    return HostnameOverride(
        hostname=hostname.lower(),
        proxied=bool(proxied) if proxied is not None else None,
        ttl=int(ttl) if ttl is not None else None,
        record_type=RecordType.parse(record_type) if record_type else None,
        content=str(data["content"]) if data.get("content") else None,
        provider_id=str(data["provider_id"]) if data.get("provider_id") else None,
        reason=str(data.get("reason") or ""),
        enabled=bool(data.get("enabled", True)),
    )


def preserved_from_dict(data: Any) -> PreservedHostname:
    if isinstance(data, str):
        data = {"hostname": data}
    hostname = str(data.get("hostname") or "").strip() if isinstance(data, dict) else ""
    if not hostname:
        raise ValueError(f"preserved hostname entry requires a hostname: {data!r}")
    return PreservedHostname(hostname=hostname.lower(), reason=str(data.get("reason") or ""))


# =============================================================================
# Record Store
# =============================================================================


class RecordStore:
    """Record persistence with atomic read-modify-write on top of StateStore.

    Every mutation loads, changes and saves the state while holding both a
    thread lock and the state file lock, so a status transition is never
    interleaved with another write from this or any other process.
    """

    def __init__(self, state_store: StateStore):
        self.state_store = state_store
        self._lock = threading.RLock()

    def _mutate(self, fn: Callable[[Dict[str, Any]], Any]) -> Any:
        with self._lock, self.state_store.locked():
            state = self.state_store.load()
            result = fn(state)
            self.state_store.save(state)
            return result

    # Records

    def _read(self) -> Dict[str, Any]:
        with self._lock, self.state_store.locked(exclusive=False):
            return self.state_store.load()

    def get(self, record_id: str) -> Optional[DNSRecord]:
        data = self._read()["records"].get(record_id)
        return DNSRecord.from_dict(data) if data else None

    def list(
        self, status: Optional[RecordStatus] = None, provider_id: Optional[str] = None
    ) -> List[DNSRecord]:
        raw = list(self._read()["records"].values())

        records = []
        for data in raw:
            try:
                record = DNSRecord.from_dict(data)
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping malformed record in state: {e}")
                continue
            if status is not None and record.status != status:
                continue
            if provider_id is not None and record.provider_id != provider_id:
                continue
            records.append(record)
        return sorted(records, key=lambda r: (r.hostname, r.provider_id, r.id))

    def find(self, hostname: str, provider_id: str, record_type: RecordType) -> Optional[DNSRecord]:
        for record in self.list(provider_id=provider_id):
            if record.hostname.lower() == hostname.lower() and record.type == record_type:
                return record
        return None

    def upsert(self, record: DNSRecord) -> DNSRecord:
        def apply(state: Dict[str, Any]) -> DNSRecord:
            state["records"][record.id] = record.to_dict()
            return record

        return self._mutate(apply)

    def update(
        self, record_id: str, fn: Callable[[DNSRecord], Optional[DNSRecord]]
    ) -> Optional[DNSRecord]:
        """Apply fn to the stored record atomically.

        fn returns the record to save, or None to leave the record untouched.
        Returns the saved record, or None if nothing was written.
        """

        def apply(state: Dict[str, Any]) -> Optional[DNSRecord]:
            data = state["records"].get(record_id)
            if not data:
                return None
            updated = fn(DNSRecord.from_dict(data))
            if updated is None:
                return None
            state["records"][record_id] = updated.to_dict()
            return updated

        return self._mutate(apply)

    def delete(self, record_id: str) -> bool:
        return self._mutate(lambda state: state["records"].pop(record_id, None) is not None)

    # Hostname overrides

    def hostname_overrides(self) -> List[HostnameOverride]:
        raw = self._read()["hostname_overrides"]
        overrides = []
        for item in raw:
            try:
                overrides.append(override_from_dict(item))
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed hostname override in state: {e}")
        return overrides

    def save_override(self, override: HostnameOverride) -> HostnameOverride:
        def apply(state: Dict[str, Any]) -> HostnameOverride:
            items = [
                o for o in state["hostname_overrides"]
                if str(o.get("hostname", "")).lower() != override.hostname.lower()
            ]
            items.append(override_to_dict(override))
            state["hostname_overrides"] = items
            return override

        return self._mutate(apply)

    def delete_override(self, hostname: str) -> bool:
        def apply(state: Dict[str, Any]) -> bool:
            before = len(state["hostname_overrides"])
            state["hostname_overrides"] = [
                o for o in state["hostname_overrides"]
                if str(o.get("hostname", "")).lower() != hostname.lower()
            ]
            return len(state["hostname_overrides"]) != before

        return self._mutate(apply)

    # Preserved hostnames

    def preserved_hostnames(self) -> List[PreservedHostname]:
        raw = self._read()["preserved_hostnames"]
        preserved = []
        for item in raw:
            try:
                preserved.append(preserved_from_dict(item))
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed preserved hostname in state: {e}")
        return preserved

    def add_preserved(self, entry: PreservedHostname) -> bool:
        def apply(state: Dict[str, Any]) -> bool:
            existing = {str(p.get("hostname", "")).lower() for p in state["preserved_hostnames"]}
            if entry.hostname.lower() in existing:
                return False
            state["preserved_hostnames"].append(
                {"hostname": entry.hostname.lower(), "reason": entry.reason}
            )
            return True

        return self._mutate(apply)

    def delete_preserved(self, hostname: str) -> bool:
        def apply(state: Dict[str, Any]) -> bool:
            before = len(state["preserved_hostnames"])
            state["preserved_hostnames"] = [
                p for p in state["preserved_hostnames"]
                if str(p.get("hostname", "")).lower() != hostname.lower()
            ]
            return len(state["preserved_hostnames"]) != before

        return self._mutate(apply)

    # Settings

    def settings(self) -> Dict[str, Any]:
        return dict(self._read()["settings"])

    def set_setting(self, key: str, value: Any) -> None:
        def apply(state: Dict[str, Any]) -> None:
            state["settings"][key] = value

        self._mutate(apply)
