"""Provider client interface and implementations."""

from __future__ import annotations

import base64
import json
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Tuple

import requests
from requests.auth import HTTPBasicAuth

from dns_distributor.errors import ProviderCallFailure
from dns_distributor.models import (
    CreateOutcome,
    CreateResult,
    Provider,
    ProviderCapabilities,
    ProviderRecordSpec,
    RecordType,
)

logger = logging.getLogger(__name__)

# =============================================================================
# Provider Client Interface
# =============================================================================


class ProviderClient(ABC):
    """Abstract base class for DNS provider clients.

    Clients report failures through CreateResult / a False return rather than
    raising, but the fan-out executor still isolates any exception that
    escapes a call.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the provider name for logging."""
        pass

    @abstractmethod
    def capabilities(self) -> ProviderCapabilities:
        """Return what this backend accepts."""
        pass

    @abstractmethod
    def create(self, spec: ProviderRecordSpec) -> CreateResult:
        """Create a record; report DUPLICATE when an equivalent one already exists."""
        pass

    @abstractmethod
    def delete(self, external_id: str) -> bool:
        """Delete a record by its provider-side id."""
        pass

    def test_connection(self) -> bool:
        return True


# =============================================================================
# AdGuard Home
# =============================================================================

ADGUARD_CAPABILITIES = ProviderCapabilities(
    supported_record_types=frozenset({RecordType.A, RecordType.AAAA, RecordType.CNAME}),
    ttl_min=0,
    ttl_max=0,
    ttl_default=0,
    supports_proxied=False,
)


def adguard_record_id(domain: str, record_type: RecordType, answer: str) -> str:
    raw = f"{domain}:{record_type.value}:{answer}"
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def parse_adguard_record_id(external_id: str) -> Tuple[str, str]:
    """Return (domain, answer) encoded in an AdGuard record id."""
    raw = base64.b64decode(external_id.encode("ascii")).decode("utf-8")
    domain, _type, answer = raw.split(":", 2)
    return domain, answer


class AdGuardProviderClient(ProviderClient):
    """AdGuard Home DNS rewrites.

    Rewrites carry no TTL and no record type: the type is implied by the
    answer (IP address or hostname).
    """

    def __init__(self, url: str, username: str, password: str, timeout_seconds: float = 5):
        self._url = url.rstrip("/")
        self._auth = HTTPBasicAuth(username, password) if username and password else None
        self._timeout = timeout_seconds
        self._session = requests.Session()
        if self._auth:
            self._session.auth = self._auth

    @property
    def name(self) -> str:
        return "AdGuard Home"

    def capabilities(self) -> ProviderCapabilities:
        return ADGUARD_CAPABILITIES

    def test_connection(self) -> bool:
        try:
            response = self._session.get(f"{self._url}/control/status", timeout=self._timeout)
            response.raise_for_status()
            logger.info(f"{self.name} connection successful")
            return True
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to connect to {self.name}: {e}")
            return False

    def list_rewrites(self) -> List[Dict[str, str]]:
        """Return the current rewrites; raises ProviderCallFailure when unreachable."""
        try:
            response = self._session.get(f"{self._url}/control/rewrite/list", timeout=self._timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.exceptions.RequestException, json.JSONDecodeError) as e:
            raise ProviderCallFailure(f"Failed to list rewrites from {self.name}: {e}") from e

        rewrites = []
        for r in data if isinstance(data, list) else []:
            domain = r.get("domain") if isinstance(r, dict) else None
            answer = r.get("answer") if isinstance(r, dict) else None
            if not isinstance(domain, str) or not isinstance(answer, str):
                logger.warning(f"Skipping malformed rewrite: {r}")
                continue
            rewrites.append({"domain": domain, "answer": answer})
        return rewrites

    def create(self, spec: ProviderRecordSpec) -> CreateResult:
        external_id = adguard_record_id(spec.hostname, spec.record_type, spec.content)
        try:
            existing = self.list_rewrites()
            for r in existing:
                if r["domain"].lower() == spec.hostname.lower() and r["answer"] == spec.content:
                    logger.info(f"Rewrite already present: {spec.hostname} -> {spec.content}")
                    return CreateResult(CreateOutcome.DUPLICATE, external_id=external_id)

            data = {"domain": spec.hostname, "answer": spec.content}
            response = self._session.post(
                f"{self._url}/control/rewrite/add", json=data, timeout=self._timeout
            )
            response.raise_for_status()
            logger.info(f"Added DNS rewrite: {spec.hostname} -> {spec.content}")
            return CreateResult(CreateOutcome.CREATED, external_id=external_id)
        except (requests.exceptions.RequestException, ProviderCallFailure) as e:
            logger.error(f"Failed to add rewrite for {spec.hostname}: {e}")
            return CreateResult(CreateOutcome.FAILED, error=str(e))

    def delete(self, external_id: str) -> bool:
        try:
            domain, answer = parse_adguard_record_id(external_id)
        except (ValueError, UnicodeDecodeError) as e:
            logger.error(f"Invalid AdGuard record id '{external_id}': {e}")
            return False

        try:
            data = {"domain": domain, "answer": answer}
            response = self._session.post(
                f"{self._url}/control/rewrite/delete", json=data, timeout=self._timeout
            )
            response.raise_for_status()
            logger.info(f"Deleted DNS rewrite: {domain} -> {answer}")
            return True
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to delete rewrite for {domain}: {e}")
            return False


# =============================================================================
# Provider Registry
# =============================================================================


def create_provider_client(provider: Provider) -> ProviderClient:
    """Factory function to create the client for a configured provider."""
    if provider.type == "adguard":
        return AdGuardProviderClient(
            provider.setting("url", "http://adguard"),
            provider.setting("username"),
            provider.setting("password"),
        )
    raise ValueError(
        f"Unsupported provider type: '{provider.type}'. Supported providers: adguard"
    )
