from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        ...

    async def sleep(self, seconds: float) -> None:
        ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


class FakeClock:
    """Manually driven clock for tests.

    With auto_advance, sleep() moves virtual time forward immediately and
    yields once to the loop, so a one hour window runs in a handful of loop
    iterations. Without it, sleepers wait until advance() passes their wake
    time, which lets a test step a session one tick at a time.
    """

    def __init__(self, start: datetime | None = None, *, auto_advance: bool = True) -> None:
        self._now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._auto_advance = auto_advance
        self._waiters: list[tuple[datetime, asyncio.Future]] = []
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self._now

    @property
    def pending_sleepers(self) -> int:
        return sum(1 for _, waiter in self._waiters if not waiter.done())

    def advance(self, seconds: float) -> None:
        self._now = self._now + timedelta(seconds=seconds)
        remaining: list[tuple[datetime, asyncio.Future]] = []
        for wake_at, waiter in self._waiters:
            if waiter.done():
                continue
            if wake_at <= self._now:
                waiter.set_result(None)
            else:
                remaining.append((wake_at, waiter))
        self._waiters = remaining

    async def sleep(self, seconds: float) -> None:
        seconds = max(0.0, seconds)
        self.sleeps.append(seconds)
        if self._auto_advance:
            self.advance(seconds)
            await asyncio.sleep(0)
            return
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append((self._now + timedelta(seconds=seconds), waiter))
        await waiter


class CancellationToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def sleep_or_cancel(self, clock: Clock, seconds: float) -> bool:
        """Sleep on the clock unless cancelled first; returns True when cancelled."""
        if self.cancelled:
            return True
        sleeper = asyncio.ensure_future(clock.sleep(seconds))
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, waiter):
                if not task.done():
                    task.cancel()
            await asyncio.gather(sleeper, waiter, return_exceptions=True)
        return self.cancelled
