"""Exceptions raised by the distribution engine."""

from __future__ import annotations


class DistributorError(Exception):
    """Base class for engine errors."""


class MissingFieldError(DistributorError):
    """No precedence layer defines a required field (configuration defect)."""

    def __init__(self, field_name: str, hostname: str = ""):
        self.field_name = field_name
        self.hostname = hostname
        where = f" for {hostname}" if hostname else ""
        super().__init__(f"No value configured for required field '{field_name}'{where}")


class CapabilityViolation(DistributorError):
    """A planned spec violates a provider's TTL bounds or supported types."""

    def __init__(self, provider_id: str, reason: str):
        self.provider_id = provider_id
        self.reason = reason
        super().__init__(f"{provider_id}: {reason}")


class ProviderCallFailure(DistributorError):
    """A provider client call failed."""


class InvalidGraceExtension(DistributorError):
    """Grace period extension rejected (record not orphaned, or no allowance left)."""


class RecordNotFound(DistributorError):
    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Record not found: {record_id}")
