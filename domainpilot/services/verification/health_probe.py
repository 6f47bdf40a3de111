from __future__ import annotations

from datetime import datetime, timezone
import logging
import time
from typing import Callable

import httpx

from domainpilot.core.config import get_settings
from domainpilot.domain.state import SIGNAL_HEALTH, CheckResult
from domainpilot.services.telemetry import record_external_call


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class HealthProbe:
    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        timeout_s: float | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        settings = get_settings()
        self._timeout_s = timeout_s if timeout_s is not None else settings.health_timeout_s
        self._user_agent = settings.health_user_agent
        self._client = client
        self._now = now or _utc_now

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        self._client = httpx.AsyncClient(timeout=self._timeout_s, follow_redirects=False)
        return self._client

    def _result(self, domain: str, verified: bool, detail: str) -> CheckResult:
        return CheckResult(
            signal=SIGNAL_HEALTH,
            verified=verified,
            detail=detail,
            observed_at=self._now(),
            domain=domain,
        )

    async def _get(self, url: str) -> httpx.Response:
        return await self._get_client().get(
            url,
            headers={"User-Agent": self._user_agent, "Accept": "text/html,*/*", "Connection": "close"},
            timeout=self._timeout_s,
        )

    async def check_health(self, domain: str) -> CheckResult:
        """Issue one bounded GET to the domain root; 2xx/3xx within the timeout is healthy.

        A transport failure over https is retried once over http, since the
        first certificate may not be live yet. Never raises.
        """
        last_error = "unknown"
        for scheme in ("https", "http"):
            start = time.monotonic()
            try:
                response = await self._get(f"{scheme}://{domain}/")
            except httpx.TimeoutException:
                latency_ms = (time.monotonic() - start) * 1000.0
                record_external_call(integration="health", latency_ms=latency_ms, success=False)
                # Timeouts do not fall back to http.
                return self._result(domain, False, f"health_error:timeout latency_ms={latency_ms:.0f}")
            except httpx.HTTPError as exc:
                latency_ms = (time.monotonic() - start) * 1000.0
                record_external_call(integration="health", latency_ms=latency_ms, success=False)
                last_error = f"health_error:connect:{exc.__class__.__name__} scheme={scheme}"
                logger.info("health_probe_transport_error domain=%s scheme=%s error=%s", domain, scheme, exc)
                continue
            except Exception as exc:  # noqa: BLE001 - probe must classify, never raise
                logger.warning("health_probe_unexpected_error domain=%s", domain, exc_info=exc)
                return self._result(domain, False, f"health_error:{exc.__class__.__name__}")

            latency_ms = (time.monotonic() - start) * 1000.0
            healthy = 200 <= response.status_code < 400
            record_external_call(integration="health", latency_ms=latency_ms, success=healthy)
            detail = f"status={response.status_code} latency_ms={latency_ms:.0f} scheme={scheme}"
            return self._result(domain, healthy, detail)
        return self._result(domain, False, last_error)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
