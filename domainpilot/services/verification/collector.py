from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import logging
from typing import Callable

from domainpilot.domain.hostnames import canonical_domain, derive_apex, www_variant
from domainpilot.domain.state import CanonicalPreference, Verdict
from domainpilot.services.verification.dns_checker import DnsRecordChecker
from domainpilot.services.verification.dual_domain import DualDomainVerifier
from domainpilot.services.verification.health_probe import HealthProbe
from domainpilot.services.verification.registrar_check import RegistrarCheck
from domainpilot.services.verification.strategy import VerificationStrategy


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SignalCollector:
    """Runs every checker of one tick concurrently and hands the results to the strategy."""

    def __init__(
        self,
        *,
        dns_checker: DnsRecordChecker,
        registrar_check: RegistrarCheck,
        health_probe: HealthProbe,
        strategy: VerificationStrategy | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._dns_checker = dns_checker
        self._dual = DualDomainVerifier(dns_checker)
        self._registrar_check = registrar_check
        self._health_probe = health_probe
        self._strategy = strategy or VerificationStrategy()
        self._now = now or _utc_now

    async def collect(self, hostname: str, canonical_preference: CanonicalPreference) -> Verdict:
        canonical = canonical_domain(hostname, canonical_preference)
        apex = derive_apex(hostname)
        # The requested hostname is reported as an extra signal when it is neither variant.
        hostname_is_variant = hostname in (apex, www_variant(apex))

        tasks = [
            self._dual.verify_both(hostname, canonical_preference),
            self._registrar_check.check(canonical),
            self._health_probe.check_health(canonical),
        ]
        if not hostname_is_variant:
            tasks.append(self._dns_checker.verify_cname(hostname))
        results = await asyncio.gather(*tasks)
        dual_result, registrar_result, health_result = results[0], results[1], results[2]
        extra = tuple(results[3:])

        verdict = self._strategy.determine_status(
            dual_result,
            registrar_result,
            health_result,
            extra_signals=extra,
            decided_at=self._now(),
        )
        logger.debug(
            "signals_collected hostname=%s canonical=%s verified=%s reason=%s",
            hostname,
            canonical,
            verdict.verified,
            verdict.reason,
        )
        return verdict
