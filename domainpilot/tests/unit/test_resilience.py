from __future__ import annotations

import httpx
import pytest

from domainpilot.core.errors import IntegrationUnavailableError
from domainpilot.services.resilience import (
    CircuitBreaker,
    CircuitBreakerConfig,
    RetryPolicy,
    UpstreamStatusError,
    raise_for_transient_status,
    retry_async,
)


async def _no_sleep(delay: float) -> None:
    return None


def _breaker(now: dict[str, float], *, threshold: int = 2) -> CircuitBreaker:
    return CircuitBreaker(
        "registrar.test",
        redis=None,
        config=CircuitBreakerConfig(failure_threshold=threshold, open_seconds=10, half_open_trials=1),
        time_source=lambda: now["t"],
    )


@pytest.mark.asyncio
async def test_retry_async_retries_transient_failures() -> None:
    calls = {"count": 0}

    async def flaky() -> str:
        calls["count"] += 1
        if calls["count"] < 2:
            raise TimeoutError("timeout")
        return "ok"

    result = await retry_async(flaky, policy=RetryPolicy(timeout_ms=100, max_attempts=2, backoff_ms=1), sleep=_no_sleep)
    assert result == "ok"
    assert calls["count"] == 2


@pytest.mark.asyncio
async def test_retry_async_does_not_retry_permanent_failures() -> None:
    calls = {"count": 0}

    async def broken() -> str:
        calls["count"] += 1
        raise ValueError("bad payload")

    with pytest.raises(ValueError):
        await retry_async(broken, policy=RetryPolicy(timeout_ms=100, max_attempts=3, backoff_ms=1), sleep=_no_sleep)
    assert calls["count"] == 1


@pytest.mark.asyncio
async def test_server_errors_are_retried_and_client_errors_are_not() -> None:
    request = httpx.Request("GET", "https://registrar.test/v1/domains")
    responses = [httpx.Response(502, request=request), httpx.Response(404, request=request)]

    async def call() -> httpx.Response:
        return raise_for_transient_status(responses.pop(0))

    policy = RetryPolicy(timeout_ms=100, max_attempts=3, backoff_ms=1)
    response = await retry_async(call, policy=policy, sleep=_no_sleep)
    assert response.status_code == 404
    assert responses == []


@pytest.mark.asyncio
async def test_exhausted_server_errors_surface_the_last_response() -> None:
    request = httpx.Request("GET", "https://registrar.test/v1/domains")

    async def call() -> httpx.Response:
        return raise_for_transient_status(httpx.Response(503, request=request))

    with pytest.raises(UpstreamStatusError) as excinfo:
        await retry_async(call, policy=RetryPolicy(timeout_ms=100, max_attempts=2, backoff_ms=1), sleep=_no_sleep)
    assert excinfo.value.response.status_code == 503


@pytest.mark.asyncio
async def test_circuit_breaker_opens_and_recovers() -> None:
    now = {"t": 0.0}
    breaker = _breaker(now)
    await breaker.before_call()
    await breaker.record_failure()
    await breaker.record_failure()
    with pytest.raises(IntegrationUnavailableError):
        await breaker.before_call()

    now["t"] = 11.0
    state = await breaker.before_call()
    assert state.state == "half_open"
    await breaker.record_success()
    state = await breaker.before_call()
    assert state.state == "closed"


@pytest.mark.asyncio
async def test_rate_limiting_does_not_trip_the_breaker() -> None:
    now = {"t": 0.0}
    breaker = _breaker(now)
    for _ in range(5):
        await breaker.record_response(429)
    assert (await breaker.before_call()).state == "closed"

    await breaker.record_response(503)
    await breaker.record_response(500)
    with pytest.raises(IntegrationUnavailableError):
        await breaker.before_call()


@pytest.mark.asyncio
async def test_half_open_failure_reopens() -> None:
    now = {"t": 0.0}
    breaker = _breaker(now, threshold=1)
    await breaker.record_response(500)
    now["t"] = 10.0
    await breaker.before_call()
    await breaker.record_response(502)
    with pytest.raises(IntegrationUnavailableError):
        await breaker.before_call()
