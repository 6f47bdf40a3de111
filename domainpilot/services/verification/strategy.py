from __future__ import annotations

from datetime import datetime

from domainpilot.domain.state import CheckResult, DualDomainResult, Verdict


REASON_DNS_AND_REGISTRAR = "dns_and_registrar_confirmed"
REASON_DNS_AND_HEALTH = "dns_and_health_confirmed"
REASON_DNS_UNVERIFIED = "dns_unverified"
REASON_REGISTRAR_UNVERIFIED = "registrar_unverified"

_MESSAGES = {
    REASON_DNS_AND_REGISTRAR: "Domain verified by DNS and the hosting provider.",
    REASON_DNS_AND_HEALTH: "Domain verified by DNS and is responding to requests.",
    REASON_DNS_UNVERIFIED: "Waiting for your DNS records to point at the platform. Check the A/CNAME records at your registrar.",
    REASON_REGISTRAR_UNVERIFIED: (
        "DNS is configured; waiting for the hosting provider to confirm the domain "
        "or for it to respond over HTTP."
    ),
}


class VerificationStrategy:
    """Combines one tick's signals into a single verdict.

    Rules, first match wins:

    1. registrar verified and DNS verified: verified, health is advisory
       because the first certificate may still be issuing.
    2. DNS verified and health verified: verified, for registrars without a
       verification API.
    3. otherwise unverified: dns_unverified, or registrar_unverified once DNS
       passes, since rule 2 already covers DNS with a healthy site.

    Pure: identical inputs always give an identical verdict.
    """

    def determine_status(
        self,
        dns_result: DualDomainResult,
        registrar_result: CheckResult,
        health_result: CheckResult,
        *,
        extra_signals: tuple[CheckResult, ...] = (),
        decided_at: datetime | None = None,
    ) -> Verdict:
        signals = (
            dns_result.apex_result,
            dns_result.www_result,
            registrar_result,
            health_result,
            *extra_signals,
        )
        dns_ok = dns_result.overall_verified
        if dns_ok and registrar_result.verified:
            return Verdict(True, REASON_DNS_AND_REGISTRAR, signals, decided_at)
        if dns_ok and health_result.verified:
            return Verdict(True, REASON_DNS_AND_HEALTH, signals, decided_at)
        reason = REASON_REGISTRAR_UNVERIFIED if dns_ok else REASON_DNS_UNVERIFIED
        return Verdict(False, reason, signals, decided_at)


def describe_reason(reason: str | None) -> str:
    if not reason:
        return "Verification has not run yet."
    return _MESSAGES.get(reason, reason)


def describe_verdict(verdict: Verdict | None) -> str:
    return describe_reason(verdict.reason if verdict is not None else None)
