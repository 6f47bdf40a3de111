from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
import json
import logging
import random
import time
from typing import Any, Awaitable, Callable

import httpx
from redis.asyncio import Redis
from redis.exceptions import RedisError

from domainpilot.core.config import get_settings
from domainpilot.core.errors import IntegrationUnavailableError
from domainpilot.services.telemetry import increment_counter, set_gauge


logger = logging.getLogger(__name__)

BREAKER_CLOSED = "closed"
BREAKER_HALF_OPEN = "half_open"
BREAKER_OPEN = "open"
_BREAKER_GAUGE = {BREAKER_CLOSED: 0.0, BREAKER_HALF_OPEN: 0.5, BREAKER_OPEN: 1.0}

# Redis clients are bound to the loop that created them.
_redis_client: tuple[asyncio.AbstractEventLoop, Redis] | None = None


async def get_resilience_redis() -> Redis | None:
    """Redis client shared by breakers in the API and the monitor worker, or None when disabled."""
    global _redis_client
    settings = get_settings()
    if not settings.cb_redis_enabled:
        return None
    loop = asyncio.get_running_loop()
    if _redis_client is not None and _redis_client[0] is loop:
        return _redis_client[1]
    try:
        client = Redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
    except (RedisError, ValueError) as exc:
        logger.warning("resilience_redis_unavailable url=%s", settings.redis_url, exc_info=exc)
        return None
    _redis_client = (loop, client)
    return client


class UpstreamStatusError(Exception):
    """A provider answered with a status worth retrying (5xx)."""

    def __init__(self, response: httpx.Response) -> None:
        super().__init__(f"upstream returned HTTP {response.status_code}")
        self.response = response
        self.status_code = response.status_code


def raise_for_transient_status(response: httpx.Response) -> httpx.Response:
    # 4xx answers, 429 included, go back to the caller; only 5xx are retried.
    if response.status_code >= 500:
        raise UpstreamStatusError(response)
    return response


def is_transient(exc: BaseException) -> bool:
    return isinstance(
        exc,
        (httpx.TimeoutException, httpx.NetworkError, TimeoutError, UpstreamStatusError),
    )


@dataclass(frozen=True)
class RetryPolicy:
    timeout_ms: int
    max_attempts: int
    backoff_ms: int

    def delay_s(self, attempt: int) -> float:
        # Exponential backoff with +/-50% jitter so API and worker retries spread out.
        return (self.backoff_ms / 1000.0) * (2 ** (attempt - 1)) * random.uniform(0.5, 1.5)


def default_retry_policy() -> RetryPolicy:
    settings = get_settings()
    return RetryPolicy(
        timeout_ms=settings.ext_call_timeout_ms,
        max_attempts=max(1, settings.ext_retry_max_attempts),
        backoff_ms=settings.ext_retry_backoff_ms,
    )


async def retry_async(
    func: Callable[[], Awaitable[Any]],
    *,
    integration: str = "external",
    policy: RetryPolicy | None = None,
    retryable: Callable[[BaseException], bool] = is_transient,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Any:
    """Run ``func`` under a per-attempt timeout, retrying transient failures.

    The last failure, or the first non-transient one, is re-raised unchanged.
    """
    policy = policy or default_retry_policy()
    attempt = 1
    while True:
        try:
            return await asyncio.wait_for(func(), timeout=policy.timeout_ms / 1000.0)
        except Exception as exc:  # noqa: BLE001 - re-raised unless transient
            if attempt >= max(policy.max_attempts, 1) or not retryable(exc):
                raise
            delay = policy.delay_s(attempt)
            increment_counter("external_retries_total")
            logger.info(
                "external_call_retry integration=%s attempt=%s delay_s=%.2f error=%s",
                integration,
                attempt,
                delay,
                exc.__class__.__name__,
            )
            await sleep(delay)
            attempt += 1


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int
    open_seconds: int
    half_open_trials: int


@dataclass
class BreakerState:
    state: str = BREAKER_CLOSED
    failures: int = 0
    opened_at: float | None = None
    trials: int = 0


class CircuitBreaker:
    """Stops calling a provider that keeps failing, then lets a few trial calls through.

    State lives in Redis when available so the API and the monitor worker
    agree on it; otherwise, or when Redis errors, it is kept per process.
    Rate limiting (429) neither opens nor closes the breaker.
    """

    def __init__(
        self,
        name: str,
        *,
        redis: Redis | None = None,
        config: CircuitBreakerConfig | None = None,
        time_source: Callable[[], float] | None = None,
    ) -> None:
        settings = get_settings()
        self._name = name
        self._redis = redis
        self._config = config or CircuitBreakerConfig(
            failure_threshold=settings.cb_failure_threshold,
            open_seconds=settings.cb_open_seconds,
            half_open_trials=settings.cb_half_open_trials,
        )
        self._time = time_source or time.monotonic
        self._key = f"{settings.cb_redis_prefix}:{name}"
        self._local = BreakerState()

    @property
    def name(self) -> str:
        return self._name

    async def _load(self) -> BreakerState:
        if self._redis is None:
            return self._local
        try:
            raw = await self._redis.get(self._key)
        except RedisError as exc:
            logger.warning("circuit_breaker_redis_read_failed name=%s", self._name, exc_info=exc)
            return self._local
        return BreakerState(**json.loads(raw)) if raw else self._local

    async def _save(self, state: BreakerState) -> None:
        self._local = state
        if self._redis is None:
            return
        try:
            # Expire idle state so a breaker for a retired provider does not linger.
            await self._redis.set(
                self._key, json.dumps(asdict(state)), ex=max(self._config.open_seconds * 4, 60)
            )
        except RedisError as exc:
            logger.warning("circuit_breaker_redis_write_failed name=%s", self._name, exc_info=exc)

    def _move(self, current: BreakerState, target: str) -> BreakerState:
        if current.state != target:
            logger.warning("circuit_breaker_transition name=%s from=%s to=%s", self._name, current.state, target)
            increment_counter(f"circuit_breaker_transition_total.{self._name}.{target}")
            set_gauge(f"circuit_breaker_state.{self._name}", _BREAKER_GAUGE[target])
        return BreakerState(state=target, opened_at=self._time() if target == BREAKER_OPEN else None)

    async def before_call(self) -> BreakerState:
        """Raise IntegrationUnavailableError while open; count half-open trial calls."""
        state = await self._load()
        if state.state == BREAKER_OPEN:
            elapsed = self._time() - (state.opened_at or 0.0)
            if elapsed < self._config.open_seconds:
                raise IntegrationUnavailableError(f"{self._name} is temporarily unavailable")
            state = self._move(state, BREAKER_HALF_OPEN)
        if state.state == BREAKER_HALF_OPEN:
            if state.trials >= self._config.half_open_trials:
                raise IntegrationUnavailableError(f"{self._name} is temporarily unavailable")
            state.trials += 1
            await self._save(state)
        return state

    async def record_success(self) -> None:
        state = await self._load()
        await self._save(self._move(state, BREAKER_CLOSED))

    async def record_failure(self) -> None:
        state = await self._load()
        if state.state == BREAKER_HALF_OPEN:
            await self._save(self._move(state, BREAKER_OPEN))
            return
        failures = state.failures + 1
        if failures >= self._config.failure_threshold:
            await self._save(self._move(state, BREAKER_OPEN))
            return
        await self._save(BreakerState(state=state.state, failures=failures, opened_at=state.opened_at))

    async def record_response(self, status_code: int) -> None:
        # Throttling is the provider working as intended; the caller backs off instead.
        if status_code == 429:
            return
        if status_code >= 500:
            await self.record_failure()
        else:
            await self.record_success()
