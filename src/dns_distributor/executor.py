"""Fan-out executor: submits planned specs to their providers independently."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Mapping, Sequence

from dns_distributor.models import (
    CreateOutcome,
    MultiCreateResult,
    PerTargetResult,
    ProviderRecordSpec,
)
from dns_distributor.providers import ProviderClient

logger = logging.getLogger(__name__)


class FanOutExecutor:
    """Dispatches each spec to its provider on a bounded worker pool.

    One target's outcome never affects another: exceptions are caught per
    target and reported as FAILED. The pool size only exists to stay within
    provider rate limits.
    """

    def __init__(self, clients: Mapping[str, ProviderClient], max_workers: int = 4):
        self.clients: Dict[str, ProviderClient] = dict(clients)
        self.max_workers = max(1, int(max_workers))

    def execute(self, specs: Sequence[ProviderRecordSpec]) -> MultiCreateResult:
        if not specs:
            return MultiCreateResult()

        workers = min(self.max_workers, len(specs))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fanout") as pool:
            futures = [pool.submit(self._submit_one, spec) for spec in specs]
            results: List[PerTargetResult] = [f.result() for f in futures]

        outcome = MultiCreateResult(results=tuple(results))
        logger.info(
            f"Fan-out finished: {outcome.created} created, {outcome.duplicates} duplicate, "
            f"{outcome.failed} failed of {outcome.total}"
        )
        return outcome

    def _submit_one(self, spec: ProviderRecordSpec) -> PerTargetResult:
        client = self.clients.get(spec.provider_id)
        if client is None:
            logger.error(f"No client configured for provider '{spec.provider_id}'")
            return PerTargetResult(
                provider_id=spec.provider_id,
                hostname=spec.hostname,
                status=CreateOutcome.FAILED,
                error=f"No client configured for provider '{spec.provider_id}'",
                spec=spec,
            )

        try:
            result = client.create(spec)
        except Exception as e:
            logger.error(f"Provider {client.name} failed to create {spec.hostname}: {e}")
            return PerTargetResult(
                provider_id=spec.provider_id,
                hostname=spec.hostname,
                status=CreateOutcome.FAILED,
                provider_name=client.name,
                error=str(e) or e.__class__.__name__,
                spec=spec,
            )

        if result.outcome == CreateOutcome.DUPLICATE:
            logger.info(f"{spec.hostname} already present on {client.name}")
        elif result.outcome == CreateOutcome.FAILED:
            logger.warning(f"{client.name} rejected {spec.hostname}: {result.error}")

        return PerTargetResult(
            provider_id=spec.provider_id,
            hostname=spec.hostname,
            status=result.outcome,
            provider_name=client.name,
            external_id=result.external_id,
            error=result.error,
            spec=spec,
        )
