from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import logging
from typing import Callable

from domainpilot.core.config import get_settings
from domainpilot.core.errors import DnsLookupError
from domainpilot.domain.state import SIGNAL_DNS, CheckResult
from domainpilot.providers.dns.base import DnsResolver


logger = logging.getLogger(__name__)

DETAIL_CNAME_MATCH = "cname_match"
DETAIL_CNAME_MISMATCH = "cname_mismatch"
DETAIL_A_MATCH = "a_record_match"
DETAIL_A_MISMATCH = "a_record_mismatch"
DETAIL_NO_RECORD = "no_record"

# Records that resolve somewhere other than the platform.
CONFLICT_DETAILS = frozenset({DETAIL_CNAME_MISMATCH, DETAIL_A_MISMATCH})


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_target(value: str) -> str:
    return value.strip().lower().rstrip(".")


def is_conflict(result: CheckResult) -> bool:
    return not result.verified and result.detail.split(":", 1)[0] in CONFLICT_DETAILS


class DnsRecordChecker:
    def __init__(
        self,
        resolver: DnsResolver,
        *,
        cname_target: str | None = None,
        apex_ip: str | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        settings = get_settings()
        self._resolver = resolver
        self._cname_target = _normalize_target(cname_target or settings.platform_cname_target)
        self._apex_ip = (apex_ip or settings.platform_apex_ip).strip()
        self._now = now or _utc_now

    @property
    def cname_target(self) -> str:
        return self._cname_target

    @property
    def apex_ip(self) -> str:
        return self._apex_ip

    def _result(self, domain: str, verified: bool, detail: str, target: str | None = None) -> CheckResult:
        return CheckResult(
            signal=SIGNAL_DNS,
            verified=verified,
            detail=detail,
            observed_at=self._now(),
            domain=domain,
            target=target,
        )

    async def verify_cname(self, domain: str) -> CheckResult:
        """Compare the domain's CNAME (or A record when no CNAME exists) against the platform.

        Apex names cannot carry CNAME records, so the A record fallback is what
        verifies them. Lookup failures come back as unverified results.
        """
        try:
            cname = await self._resolver.resolve_cname(domain)
            if cname:
                target = _normalize_target(cname)
                if target == self._cname_target:
                    return self._result(domain, True, DETAIL_CNAME_MATCH, target)
                logger.info("dns_cname_mismatch domain=%s target=%s expected=%s", domain, target, self._cname_target)
                return self._result(domain, False, f"{DETAIL_CNAME_MISMATCH}:{target}", target)

            addresses = await self._resolver.resolve_a(domain)
            if not addresses:
                return self._result(domain, False, DETAIL_NO_RECORD)
            if self._apex_ip in addresses:
                return self._result(domain, True, DETAIL_A_MATCH, self._apex_ip)
            observed = ",".join(sorted(addresses))
            return self._result(domain, False, f"{DETAIL_A_MISMATCH}:{observed}", observed)
        except DnsLookupError as exc:
            logger.info("dns_lookup_failed domain=%s kind=%s", domain, exc.kind)
            return self._result(domain, False, f"dns_error:{exc.kind}")
        except Exception as exc:  # noqa: BLE001 - resolver bugs must not escape the checker
            logger.warning("dns_lookup_unexpected_error domain=%s", domain, exc_info=exc)
            return self._result(domain, False, f"dns_error:{exc.__class__.__name__}")


async def verify_cname_multiple(
    domain: str,
    resolvers: dict[str, DnsResolver],
    *,
    cname_target: str | None = None,
    apex_ip: str | None = None,
) -> tuple[CheckResult, dict[str, CheckResult]]:
    # Ask several public resolvers; any agreement counts, the ratio surfaces propagation progress.
    labels = sorted(resolvers)
    checkers = [
        DnsRecordChecker(resolvers[label], cname_target=cname_target, apex_ip=apex_ip) for label in labels
    ]
    results = await asyncio.gather(*(checker.verify_cname(domain) for checker in checkers))
    per_resolver = dict(zip(labels, results))
    verified_count = sum(1 for result in results if result.verified)
    summary = CheckResult(
        signal=SIGNAL_DNS,
        verified=verified_count > 0,
        detail=f"resolvers_verified:{verified_count}/{len(results)}",
        observed_at=_utc_now(),
        domain=domain,
        target=next((result.target for result in results if result.verified), None),
    )
    return summary, per_resolver
