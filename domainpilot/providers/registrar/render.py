from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any

import httpx

from domainpilot.core.config import get_settings
from domainpilot.core.errors import (
    ConfigurationError,
    RegistrarAuthError,
    RegistrarError,
    RegistrarRateLimitError,
)
from domainpilot.providers.registrar.base import DomainRecord, RegistrarVerification
from domainpilot.services.resilience import (
    CircuitBreaker,
    UpstreamStatusError,
    get_resilience_redis,
    raise_for_transient_status,
    retry_async,
)
from domainpilot.services.telemetry import record_external_call


logger = logging.getLogger(__name__)

_INTEGRATION = "registrar.render"


def _error_message(response: httpx.Response) -> str:
    # Prefer the provider's message field; fall back to a truncated body.
    if not response.content:
        return f"HTTP {response.status_code}"
    try:
        payload = response.json()
    except ValueError:
        return f"HTTP {response.status_code}: {response.text[:100]}"
    if isinstance(payload, dict):
        return str(payload.get("message") or payload.get("error") or f"HTTP {response.status_code}")
    return f"HTTP {response.status_code}"


def _to_record(payload: Any) -> DomainRecord | None:
    # Some providers wrap list items as {"customDomain": {...}}.
    if isinstance(payload, dict) and isinstance(payload.get("customDomain"), dict):
        payload = payload["customDomain"]
    if not isinstance(payload, dict) or not payload.get("id"):
        return None
    verified = payload.get("verified")
    if verified is None:
        verified = payload.get("verificationStatus") == "verified"
    return DomainRecord(
        id=str(payload["id"]),
        name=str(payload.get("name", "")).lower(),
        verified=bool(verified),
        raw=payload,
    )


class RenderRegistrarClient:
    """Client for a Render-style hosting provider custom-domain API."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        sleep=asyncio.sleep,
    ) -> None:
        self._settings = get_settings()
        self._client = client
        self._base_url = (base_url or self._settings.registrar_base_url).rstrip("/")
        self._api_key = api_key if api_key is not None else self._settings.registrar_api_key
        self._breaker: CircuitBreaker | None = None
        self._sleep = sleep

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        # Reuse a single client per provider for connection pooling.
        self._client = httpx.AsyncClient(timeout=self._settings.registrar_timeout_s)
        return self._client

    async def _get_breaker(self) -> CircuitBreaker:
        if self._breaker is not None:
            return self._breaker
        redis = await get_resilience_redis()
        self._breaker = CircuitBreaker(_INTEGRATION, redis=redis)
        return self._breaker

    def _rate_limit_delay(self, attempt: int, response: httpx.Response) -> float:
        max_delay = self._settings.registrar_rate_limit_max_delay_s
        retry_after = response.headers.get("Retry-After")
        if retry_after and retry_after.isdigit() and int(retry_after) > 0:
            return min(float(retry_after), max_delay)
        base = self._settings.registrar_rate_limit_base_delay_s * (2 ** attempt)
        return min(base + random.uniform(0, base * 0.1), max_delay)

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        if not self._api_key:
            raise ConfigurationError("REGISTRAR_API_KEY is required for the render registrar")
        headers = {"Accept": "application/json", "Authorization": f"Bearer {self._api_key}"}
        client = self._get_client()
        url = f"{self._base_url}{path}"
        breaker = await self._get_breaker()
        await breaker.before_call()

        attempt = 0
        while True:
            start = time.monotonic()

            async def _call() -> httpx.Response:
                response = await client.request(method, url, headers=headers, **kwargs)
                return raise_for_transient_status(response)

            try:
                response = await retry_async(_call, integration=_INTEGRATION, sleep=self._sleep)
            except UpstreamStatusError as exc:
                # Still 5xx after retries; the caller reports the provider's own message.
                response = exc.response
            except (httpx.HTTPError, TimeoutError) as exc:
                await breaker.record_failure()
                record_external_call(
                    integration=_INTEGRATION,
                    latency_ms=(time.monotonic() - start) * 1000.0,
                    success=False,
                )
                raise RegistrarError(f"Request failed: {exc.__class__.__name__}") from exc

            if response.status_code != 429:
                break
            if attempt >= self._settings.registrar_rate_limit_retries:
                record_external_call(
                    integration=_INTEGRATION,
                    latency_ms=(time.monotonic() - start) * 1000.0,
                    success=False,
                )
                raise RegistrarRateLimitError(
                    f"Rate limit exceeded after {self._settings.registrar_rate_limit_retries} retries"
                )
            delay = self._rate_limit_delay(attempt, response)
            logger.warning(
                "registrar_rate_limited method=%s path=%s retry_in_s=%.1f attempt=%s",
                method,
                path,
                delay,
                attempt + 1,
            )
            await self._sleep(delay)
            attempt += 1

        latency_ms = (time.monotonic() - start) * 1000.0
        await breaker.record_response(response.status_code)
        record_external_call(
            integration=_INTEGRATION,
            latency_ms=latency_ms,
            success=response.status_code < 400 or response.status_code == 404,
        )
        if response.status_code in {401, 403}:
            raise RegistrarAuthError("Registrar auth error: check REGISTRAR_API_KEY.")
        return response

    async def find_domain_by_name(self, name: str) -> DomainRecord | None:
        response = await self._request("GET", "/domains", params={"name": name})
        # Unknown domains are an expected state while the provider catches up.
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise RegistrarError(f"Failed to find domain: {_error_message(response)}")
        payload = response.json()
        items = payload if isinstance(payload, list) else [payload]
        for item in items:
            record = _to_record(item)
            if record is not None and record.name == name.lower():
                return record
        return None

    async def verify_domain(self, domain_id: str) -> RegistrarVerification:
        response = await self._request("POST", f"/domains/{domain_id}/verify", json={})
        if response.status_code >= 400:
            raise RegistrarError(f"Failed to verify domain: {_error_message(response)}")
        payload = response.json() if response.content else {}
        verified = isinstance(payload, dict) and payload.get("verified") is True
        logger.info("registrar_verify domain_id=%s verified=%s", domain_id, verified)
        return RegistrarVerification(verified=verified, raw=payload if isinstance(payload, dict) else {})

    async def add_domain(self, name: str) -> DomainRecord:
        response = await self._request("POST", "/domains", json={"name": name})
        if response.status_code >= 400:
            raise RegistrarError(f"Failed to add domain: {_error_message(response)}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise RegistrarError(f"Unexpected registrar response format: {response.text[:100]!r}") from exc
        # Creation may return a list containing the primary and its sibling redirect domain.
        items = payload if isinstance(payload, list) else [payload]
        records = [record for record in (_to_record(item) for item in items) if record is not None]
        for record in records:
            if record.name == name.lower():
                return record
        if records:
            return records[0]
        raise RegistrarError(f"Missing domain id in registrar response: {payload!r}")

    async def remove_domain(self, domain_id: str) -> None:
        response = await self._request("DELETE", f"/domains/{domain_id}")
        if response.status_code == 404:
            return
        if response.status_code >= 400:
            raise RegistrarError(f"Failed to remove domain: {_error_message(response)}")

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
