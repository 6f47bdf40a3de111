from __future__ import annotations

import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque


@dataclass(frozen=True)
class ExternalCallSample:
    ts: float
    integration: str
    latency_ms: float
    success: bool


_external_samples: Deque[ExternalCallSample] = deque(maxlen=10000)
_counters: dict[str, int] = defaultdict(int)
_gauges: dict[str, float] = {}


def record_external_call(*, integration: str, latency_ms: float, success: bool) -> None:
    # Capture external call latency and outcomes for DNS, health and registrar calls.
    _external_samples.append(
        ExternalCallSample(
            ts=time.time(),
            integration=integration,
            latency_ms=latency_ms,
            success=success,
        )
    )


def increment_counter(name: str, value: int = 1) -> None:
    _counters[name] += value


def set_gauge(name: str, value: float) -> None:
    _gauges[name] = value


def counter_value(name: str) -> int:
    return _counters.get(name, 0)


def gauge_value(name: str) -> float | None:
    return _gauges.get(name)


def external_call_stats(integration: str, window_s: int = 3600) -> dict[str, float | int | None]:
    # Summarize recent calls for one integration so operators can spot a flaky provider.
    cutoff = time.time() - window_s
    samples = [s for s in _external_samples if s.integration == integration and s.ts >= cutoff]
    if not samples:
        return {"calls": 0, "failures": 0, "avg_latency_ms": None}
    failures = sum(1 for s in samples if not s.success)
    avg = sum(s.latency_ms for s in samples) / len(samples)
    return {"calls": len(samples), "failures": failures, "avg_latency_ms": round(avg, 2)}


def reset_telemetry() -> None:
    # Allow tests to start from clean counters.
    _external_samples.clear()
    _counters.clear()
    _gauges.clear()
