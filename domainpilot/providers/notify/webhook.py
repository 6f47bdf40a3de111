from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time

import httpx

from domainpilot.core.config import get_settings
from domainpilot.core.errors import ConfigurationError
from domainpilot.providers.notify.base import DomainNotification
from domainpilot.services.resilience import UpstreamStatusError, raise_for_transient_status, retry_async
from domainpilot.services.telemetry import increment_counter, record_external_call


logger = logging.getLogger(__name__)


def build_signature(secret: str, payload: bytes) -> str:
    # Compute HMAC SHA256 signatures so receivers can authenticate deliveries.
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


class WebhookNotifier:
    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        url: str | None = None,
        secret: str | None = None,
    ) -> None:
        settings = get_settings()
        self._url = url or settings.notifier_webhook_url
        self._secret = secret or settings.notifier_webhook_secret
        if not self._url or not self._secret:
            raise ConfigurationError("NOTIFIER_WEBHOOK_URL and NOTIFIER_WEBHOOK_SECRET are required")
        self._timeout = min(settings.notifier_webhook_timeout_ms, settings.ext_call_timeout_ms) / 1000.0
        self._client = client

    async def send(self, notification: DomainNotification) -> None:
        body = json.dumps(notification.to_dict(), separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "X-Domain-Event": notification.event_type,
            "X-Domain-Signature": build_signature(self._secret, body),
        }

        async def _call() -> httpx.Response:
            if self._client is not None:
                return raise_for_transient_status(
                    await self._client.post(self._url, content=body, headers=headers)
                )
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                return raise_for_transient_status(await client.post(self._url, content=body, headers=headers))

        start = time.monotonic()
        try:
            response = await retry_async(_call, integration="notify.webhook")
        except UpstreamStatusError as exc:
            response = exc.response
        except Exception as exc:  # noqa: BLE001 - delivery failures are non-fatal for the monitor
            record_external_call(
                integration="notify.webhook",
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            increment_counter("domain_notification_failures_total")
            logger.warning(
                "domain_notification_send_failed event_type=%s tenant_id=%s",
                notification.event_type,
                notification.tenant_id,
                exc_info=exc,
            )
            return
        ok = response.status_code < 400
        record_external_call(
            integration="notify.webhook",
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=ok,
        )
        if not ok:
            increment_counter("domain_notification_failures_total")
            logger.warning(
                "domain_notification_rejected event_type=%s tenant_id=%s status=%s",
                notification.event_type,
                notification.tenant_id,
                response.status_code,
            )
