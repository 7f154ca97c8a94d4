"""Effective TTL computation against provider bounds."""

from __future__ import annotations

from dataclasses import dataclass

from dns_distributor.models import ClampBound, ProviderCapabilities


@dataclass(frozen=True)
class TtlCheck:
    ok: bool
    clamped: int
    reason: ClampBound = ClampBound.NONE


def clamp(value: int, low: int, high: int) -> int:
    if low > high:
        raise ValueError(f"Invalid clamp range: {low} > {high}")
    return min(max(value, low), high)


def effective_ttl(
    caps: ProviderCapabilities, global_ttl: int, global_override_enabled: bool
) -> int:
    """Provider default unless the global TTL override is on, then the clamped global TTL."""
    if not global_override_enabled:
        return caps.ttl_default
    return clamp(int(global_ttl), caps.ttl_min, caps.ttl_max)


def clamp_for_validation(ttl: int, caps: ProviderCapabilities) -> TtlCheck:
    """Report whether ttl fits the provider bounds and which bound it would hit."""
    if ttl < caps.ttl_min:
        return TtlCheck(ok=False, clamped=caps.ttl_min, reason=ClampBound.MIN)
    if ttl > caps.ttl_max:
        return TtlCheck(ok=False, clamped=caps.ttl_max, reason=ClampBound.MAX)
    return TtlCheck(ok=True, clamped=ttl)
