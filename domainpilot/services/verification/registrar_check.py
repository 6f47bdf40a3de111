from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Callable

from domainpilot.domain.state import SIGNAL_REGISTRAR, CheckResult
from domainpilot.providers.registrar.base import RegistrarClient


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RegistrarCheck:
    def __init__(self, client: RegistrarClient, *, now: Callable[[], datetime] | None = None) -> None:
        self._client = client
        self._now = now or _utc_now

    async def check(self, domain: str) -> CheckResult:
        # A flaky provider becomes an unverified signal rather than a crashed tick.
        try:
            record = await self._client.find_domain_by_name(domain)
            if record is None:
                return self._result(domain, False, "registrar_domain_not_found")
            verification = await self._client.verify_domain(record.id)
        except Exception as exc:  # noqa: BLE001 - every registrar failure folds into the signal
            logger.warning("registrar_check_failed domain=%s error=%s", domain, exc)
            return self._result(domain, False, f"registrar_error:{exc}")
        if verification.verified:
            return self._result(domain, True, "registrar_verified", record.id)
        return self._result(domain, False, "registrar_pending", record.id)

    def _result(self, domain: str, verified: bool, detail: str, domain_id: str | None = None) -> CheckResult:
        return CheckResult(
            signal=SIGNAL_REGISTRAR,
            verified=verified,
            detail=detail,
            observed_at=self._now(),
            domain=domain,
            target=domain_id,
        )
