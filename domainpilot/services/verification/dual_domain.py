from __future__ import annotations

import asyncio
import logging

from domainpilot.domain.hostnames import derive_apex, www_variant
from domainpilot.domain.state import CanonicalPreference, DualDomainResult
from domainpilot.services.verification.dns_checker import DnsRecordChecker, is_conflict


logger = logging.getLogger(__name__)


class DualDomainVerifier:
    """Checks the apex and www variants of a hostname and reduces them to one verdict.

    Registrars propagate apex and www records at different speeds, so only the
    canonical variant must be verified. The other variant may be verified or
    unconfigured, but must not point somewhere else.
    """

    def __init__(self, checker: DnsRecordChecker) -> None:
        self._checker = checker

    async def verify_both(
        self,
        hostname: str,
        canonical_preference: CanonicalPreference = CanonicalPreference.APEX,
    ) -> DualDomainResult:
        apex = derive_apex(hostname)
        www = www_variant(apex)
        apex_result, www_result = await asyncio.gather(
            self._checker.verify_cname(apex),
            self._checker.verify_cname(www),
        )
        if canonical_preference == CanonicalPreference.WWW:
            canonical, sibling = www_result, apex_result
        else:
            canonical, sibling = apex_result, www_result
        overall = canonical.verified and not is_conflict(sibling)
        if not overall:
            logger.info(
                "dual_domain_unverified hostname=%s canonical=%s apex=%s www=%s",
                hostname,
                canonical_preference.value,
                apex_result.detail,
                www_result.detail,
            )
        return DualDomainResult(
            apex_result=apex_result,
            www_result=www_result,
            overall_verified=overall,
            canonical_preference=canonical_preference,
        )


def status_summary(result: DualDomainResult, *, cname_target: str, apex_ip: str) -> dict[str, object]:
    # Tenant-facing DNS guidance for the setup screen.
    steps: list[str] = []
    if not result.apex_result.verified:
        steps.append(f"Add A record: @ → {apex_ip}")
    if not result.www_result.verified:
        steps.append(f"Add CNAME record: www → {cname_target}")
    if result.apex_result.verified and result.www_result.verified:
        message = "Both apex domain and www subdomain are correctly configured"
    elif result.apex_result.verified:
        message = "Apex domain (A record) verified, www subdomain (CNAME) needs configuration"
    elif result.www_result.verified:
        message = "www subdomain (CNAME) verified, apex domain (A record) needs configuration"
    else:
        message = "Both A record and CNAME record need configuration"
    return {
        "overall_status": "verified" if result.overall_verified else "incomplete",
        "message": message,
        "apex_status": "verified" if result.apex_result.verified else "missing",
        "www_status": "verified" if result.www_result.verified else "missing",
        "next_steps": steps or ["Domain configuration is complete!"],
    }
