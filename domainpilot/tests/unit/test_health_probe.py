from __future__ import annotations

import httpx
import pytest

from domainpilot.services.telemetry import external_call_stats
from domainpilot.services.verification.health_probe import HealthProbe


def _probe(handler) -> HealthProbe:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=False)
    return HealthProbe(client, timeout_s=1.0)


@pytest.mark.asyncio
async def test_success_reports_status_latency_and_scheme() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.scheme == "https"
        assert request.url.path == "/"
        return httpx.Response(200, request=request)

    result = await _probe(handler).check_health("example.com")
    assert result.verified is True
    assert result.signal == "health"
    assert result.detail.startswith("status=200 latency_ms=")
    assert result.detail.endswith("scheme=https")
    assert external_call_stats("health")["calls"] == 1


@pytest.mark.asyncio
async def test_redirect_counts_as_healthy_without_following() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(301, headers={"Location": "https://www.example.com/"}, request=request)

    result = await _probe(handler).check_health("example.com")
    assert result.verified is True
    assert seen == ["https://example.com/"]


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [404, 502])
async def test_error_status_is_unverified(status: int) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, request=request)

    result = await _probe(handler).check_health("example.com")
    assert result.verified is False
    assert result.detail.startswith(f"status={status} ")


@pytest.mark.asyncio
async def test_https_transport_failure_falls_back_to_http_once() -> None:
    schemes: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        schemes.append(request.url.scheme)
        if request.url.scheme == "https":
            raise httpx.ConnectError("certificate verify failed", request=request)
        return httpx.Response(200, request=request)

    result = await _probe(handler).check_health("example.com")
    assert result.verified is True
    assert result.detail.endswith("scheme=http")
    assert schemes == ["https", "http"]


@pytest.mark.asyncio
async def test_unreachable_on_both_schemes() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    result = await _probe(handler).check_health("example.com")
    assert result.verified is False
    assert result.detail.startswith("health_error:connect:ConnectError")


@pytest.mark.asyncio
async def test_timeout_is_reported_without_fallback() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        raise httpx.ReadTimeout("timed out", request=request)

    result = await _probe(handler).check_health("example.com")
    assert result.verified is False
    assert result.detail.startswith("health_error:timeout")
    assert calls["count"] == 1
