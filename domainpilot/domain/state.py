from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class DomainStatus(str, Enum):
    NONE = "none"
    PENDING_VERIFICATION = "pending_verification"
    MONITORING = "monitoring"
    VERIFIED_ACTIVE = "verified_active"
    TIMED_OUT = "timed_out"


class CanonicalPreference(str, Enum):
    APEX = "apex"
    WWW = "www"


SIGNAL_DNS = "dns"
SIGNAL_REGISTRAR = "registrar"
SIGNAL_HEALTH = "health"

# Lifecycle edges driven by the monitor, restart and removal paths.
_ALLOWED_TRANSITIONS: dict[DomainStatus, set[DomainStatus]] = {
    DomainStatus.NONE: {DomainStatus.PENDING_VERIFICATION},
    DomainStatus.PENDING_VERIFICATION: {DomainStatus.MONITORING, DomainStatus.NONE},
    DomainStatus.MONITORING: {
        DomainStatus.VERIFIED_ACTIVE,
        DomainStatus.TIMED_OUT,
        DomainStatus.NONE,
    },
    DomainStatus.TIMED_OUT: {DomainStatus.MONITORING, DomainStatus.NONE},
    DomainStatus.VERIFIED_ACTIVE: {DomainStatus.NONE},
}

# Operator override: activate without waiting for a positive verdict.
FORCE_ACTIVATE_FROM = frozenset(
    {DomainStatus.PENDING_VERIFICATION, DomainStatus.MONITORING, DomainStatus.TIMED_OUT}
)


def transition_allowed(current: DomainStatus, target: DomainStatus, *, supersede: bool = False) -> bool:
    # A new DomainRequest resets any lifecycle back to pending verification.
    if supersede:
        return target == DomainStatus.PENDING_VERIFICATION
    return target in _ALLOWED_TRANSITIONS.get(current, set())


@dataclass(frozen=True)
class DomainRequest:
    tenant_id: str
    hostname: str
    canonical_preference: CanonicalPreference
    requested_at: datetime


@dataclass(frozen=True)
class CheckResult:
    # One signal's observation for a single tick; never reused across ticks.
    signal: str
    verified: bool
    detail: str
    observed_at: datetime
    domain: str | None = None
    target: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "signal": self.signal,
            "verified": self.verified,
            "detail": self.detail,
            "observed_at": self.observed_at.isoformat(),
            "domain": self.domain,
            "target": self.target,
        }


@dataclass(frozen=True)
class DualDomainResult:
    apex_result: CheckResult
    www_result: CheckResult
    overall_verified: bool
    canonical_preference: CanonicalPreference

    @property
    def canonical_result(self) -> CheckResult:
        if self.canonical_preference == CanonicalPreference.WWW:
            return self.www_result
        return self.apex_result


@dataclass(frozen=True)
class Verdict:
    verified: bool
    reason: str
    signals: tuple[CheckResult, ...] = field(default_factory=tuple)
    decided_at: datetime | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "verified": self.verified,
            "reason": self.reason,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
            "signals": [signal.to_dict() for signal in self.signals],
        }
