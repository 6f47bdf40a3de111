from __future__ import annotations

import json

import httpx
import pytest

from domainpilot.core.config import get_settings
from domainpilot.core.errors import (
    ConfigurationError,
    RegistrarAuthError,
    RegistrarError,
    RegistrarRateLimitError,
)
from domainpilot.providers.registrar.factory import get_registrar_client
from domainpilot.providers.registrar.fake import FakeRegistrarClient
from domainpilot.providers.registrar.render import RenderRegistrarClient
from domainpilot.services.verification.registrar_check import RegistrarCheck


BASE_URL = "https://registrar.test/v1"


class _Sleeps:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _client(handler, *, sleep=None, api_key: str = "rk_test") -> RenderRegistrarClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RenderRegistrarClient(http, base_url=BASE_URL, api_key=api_key, sleep=sleep or _Sleeps())


@pytest.mark.asyncio
async def test_find_domain_by_name_sends_bearer_token_and_matches_name() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer rk_test"
        assert request.url.path == "/v1/domains"
        assert request.url.params["name"] == "example.com"
        return httpx.Response(
            200,
            json=[
                {"customDomain": {"id": "dom_www", "name": "www.example.com"}},
                {"customDomain": {"id": "dom_apex", "name": "example.com", "verificationStatus": "verified"}},
            ],
        )

    record = await _client(handler).find_domain_by_name("example.com")
    assert record is not None
    assert record.id == "dom_apex"
    assert record.verified is True


@pytest.mark.asyncio
async def test_find_domain_returns_none_when_provider_has_no_record() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"message": "not found"})

    assert await _client(handler).find_domain_by_name("example.com") is None


@pytest.mark.asyncio
async def test_verify_domain_posts_to_verify_endpoint() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        assert request.url.path == "/v1/domains/dom_1/verify"
        return httpx.Response(200, json={"verified": True})

    verification = await _client(handler).verify_domain("dom_1")
    assert verification.verified is True


@pytest.mark.asyncio
async def test_rate_limit_honours_retry_after_then_succeeds() -> None:
    responses = [
        httpx.Response(429, headers={"Retry-After": "7"}),
        httpx.Response(429),
        httpx.Response(200, json={"id": "dom_1", "name": "example.com"}),
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content) == {"name": "example.com"}
        return responses.pop(0)

    sleeps = _Sleeps()
    record = await _client(handler, sleep=sleeps).add_domain("example.com")
    assert record.id == "dom_1"
    assert sleeps.delays[0] == 7.0
    # Second wait is exponential from the configured base delay.
    assert 4.0 <= sleeps.delays[1] <= 4.4


@pytest.mark.asyncio
async def test_rate_limit_gives_up_after_bounded_retries() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, headers={"Retry-After": "999"})

    sleeps = _Sleeps()
    with pytest.raises(RegistrarRateLimitError):
        await _client(handler, sleep=sleeps).find_domain_by_name("example.com")
    assert len(sleeps.delays) == 3
    assert all(delay == 60.0 for delay in sleeps.delays)


@pytest.mark.asyncio
async def test_auth_failure_raises_auth_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "bad key"})

    with pytest.raises(RegistrarAuthError):
        await _client(handler).verify_domain("dom_1")


@pytest.mark.asyncio
async def test_missing_api_key_fails_lazily_with_configuration_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    client = _client(handler, api_key="")
    with pytest.raises(ConfigurationError):
        await client.find_domain_by_name("example.com")


@pytest.mark.asyncio
async def test_remove_domain_ignores_missing_record() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "DELETE"
        return httpx.Response(404)

    await _client(handler).remove_domain("dom_gone")


@pytest.mark.asyncio
async def test_registrar_check_folds_outcomes_into_results() -> None:
    registrar = FakeRegistrarClient()
    check = RegistrarCheck(registrar)

    missing = await check.check("example.com")
    assert (missing.verified, missing.detail) == (False, "registrar_domain_not_found")

    registrar.register("example.com")
    pending = await check.check("example.com")
    assert (pending.verified, pending.detail) == (False, "registrar_pending")

    registrar.mark_verified("example.com")
    verified = await check.check("example.com")
    assert (verified.verified, verified.detail) == (True, "registrar_verified")
    assert verified.signal == "registrar"

    registrar.fail_with = "provider down"
    failed = await check.check("example.com")
    assert (failed.verified, failed.detail) == (False, "registrar_error:provider down")


@pytest.mark.asyncio
async def test_factory_selects_provider(monkeypatch) -> None:
    monkeypatch.setenv("REGISTRAR_PROVIDER", "none")
    get_settings.cache_clear()
    client = get_registrar_client()
    assert await client.find_domain_by_name("example.com") is None

    monkeypatch.setenv("REGISTRAR_PROVIDER", "carrier-pigeon")
    get_settings.cache_clear()
    with pytest.raises(ConfigurationError):
        get_registrar_client()


@pytest.mark.asyncio
async def test_server_error_is_retried_before_succeeding() -> None:
    responses = [
        httpx.Response(503, json={"message": "upstream unavailable"}),
        httpx.Response(200, json=[{"id": "dom_1", "name": "example.com", "verified": False}]),
    ]
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.method)
        return responses.pop(0)

    sleeps = _Sleeps()
    record = await _client(handler, sleep=sleeps).find_domain_by_name("example.com")
    assert record is not None
    assert record.id == "dom_1"
    assert calls == ["GET", "GET"]
    assert len(sleeps.delays) == 1


@pytest.mark.asyncio
async def test_persistent_server_error_reports_provider_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, json={"message": "bad gateway"})

    sleeps = _Sleeps()
    with pytest.raises(RegistrarError, match="bad gateway"):
        await _client(handler, sleep=sleeps).add_domain("example.com")
    assert len(sleeps.delays) == get_settings().ext_retry_max_attempts - 1
