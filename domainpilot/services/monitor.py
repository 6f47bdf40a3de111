from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
from typing import Callable
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError

from domainpilot.core.config import get_settings
from domainpilot.core.errors import (
    ConfigurationError,
    FinalizationConflict,
    InvalidTransitionError,
    TenantNotFoundError,
)
from domainpilot.domain.models import Tenant
from domainpilot.domain.state import CanonicalPreference, DomainRequest, DomainStatus, Verdict
from domainpilot.persistence.repos import tenants as tenants_repo
from domainpilot.providers.notify.base import EVENT_TIMEOUT_HELP
from domainpilot.services.finalizer import ActivationFinalizer, DomainStatusStore
from domainpilot.services.notifications import SessionNotifier
from domainpilot.services.scheduler import CancellationToken, Clock, SystemClock
from domainpilot.services.telemetry import increment_counter, set_gauge
from domainpilot.services.verification.collector import SignalCollector
from domainpilot.services.verification.strategy import describe_verdict


logger = logging.getLogger(__name__)

OUTCOME_ACTIVATED = "activated"
OUTCOME_ALREADY_FINAL = "already_final"
OUTCOME_TIMED_OUT = "timed_out"
OUTCOME_CANCELLED = "cancelled"


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; treat them as the UTC values they were stored as.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class MonitoringSession:
    session_id: str
    tenant_id: str
    hostname: str
    canonical_preference: CanonicalPreference
    started_at: datetime
    deadline: datetime
    tick_interval: float
    attempts: int = 0
    token: CancellationToken = field(default_factory=CancellationToken)
    tick_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    latest_verdict: Verdict | None = None
    outcome: str | None = None
    task: asyncio.Task | None = None

    @property
    def finished(self) -> bool:
        return self.outcome is not None

    def to_dict(self) -> dict[str, object]:
        return {
            "session_id": self.session_id,
            "hostname": self.hostname,
            "canonical_preference": self.canonical_preference.value,
            "started_at": self.started_at.isoformat(),
            "deadline": self.deadline.isoformat(),
            "tick_interval_s": self.tick_interval,
            "attempts": self.attempts,
        }


class DomainMonitor:
    """Runs one time-bounded polling session per tenant.

    Each session is a single asyncio task; a tick never overlaps another tick
    of the same session because scheduled ticks and check_now() share the
    session's tick lock. Sessions of different tenants interleave freely.

    With ``launch_sessions`` off the monitor only persists the move to
    monitoring and leaves polling to the worker process.
    """

    def __init__(
        self,
        *,
        collector: SignalCollector,
        store: DomainStatusStore,
        finalizer: ActivationFinalizer,
        notifier: SessionNotifier,
        clock: Clock | None = None,
        tick_interval_s: float | None = None,
        window_s: float | None = None,
        initial_delay_s: float | None = None,
        launch_sessions: bool | None = None,
    ) -> None:
        settings = get_settings()
        self._collector = collector
        self._store = store
        self._finalizer = finalizer
        self._notifier = notifier
        self._clock = clock or SystemClock()
        self._tick_interval_s = float(
            tick_interval_s if tick_interval_s is not None else settings.monitor_tick_interval_s
        )
        self._window_s = float(window_s if window_s is not None else settings.monitor_window_s)
        self._initial_delay_s = float(
            initial_delay_s if initial_delay_s is not None else settings.monitor_initial_delay_s
        )
        self._launch_sessions = settings.monitor_run_in_api if launch_sessions is None else launch_sessions
        self._sessions: dict[str, MonitoringSession] = {}
        self._verdicts: dict[str, Verdict] = {}
        self._tasks: set[asyncio.Task] = set()

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def launches_sessions(self) -> bool:
        return self._launch_sessions

    def active_session(self, tenant_id: str) -> MonitoringSession | None:
        return self._sessions.get(tenant_id)

    def latest_verdict(self, tenant_id: str) -> Verdict | None:
        return self._verdicts.get(tenant_id)

    def active_tenant_ids(self) -> list[str]:
        return sorted(self._sessions)

    async def start(self, request: DomainRequest) -> MonitoringSession:
        # pending_verification -> monitoring for a freshly requested hostname.
        return await self._open_session(
            tenant_id=request.tenant_id,
            hostname=request.hostname,
            canonical_preference=request.canonical_preference,
            expected_from=DomainStatus.PENDING_VERIFICATION,
            reason="monitoring_started",
        )

    async def restart(self, tenant_id: str) -> MonitoringSession:
        """Give a timed out domain a fresh session and deadline."""
        async with self._store.session_factory() as session:
            tenant = await tenants_repo.get_tenant(session, tenant_id)
        if tenant is None:
            raise TenantNotFoundError(f"tenant {tenant_id} not found")
        if tenant.domain_status != DomainStatus.TIMED_OUT.value or not tenant.custom_domain:
            raise InvalidTransitionError(tenant.domain_status, DomainStatus.MONITORING.value)
        return await self._open_session(
            tenant_id=tenant_id,
            hostname=tenant.custom_domain,
            canonical_preference=CanonicalPreference(tenant.canonical_preference),
            expected_from=DomainStatus.TIMED_OUT,
            reason="manual_restart",
        )

    async def _open_session(
        self,
        *,
        tenant_id: str,
        hostname: str,
        canonical_preference: CanonicalPreference,
        expected_from: DomainStatus,
        reason: str,
    ) -> MonitoringSession:
        await self.cancel(tenant_id)
        started_at = self._clock.now()
        session_id = uuid4().hex
        await self._store.transition(
            tenant_id,
            DomainStatus.MONITORING,
            expected_from={expected_from},
            hostname=hostname,
            reason=reason,
            session_id=session_id,
            values={"monitoring_started_at": started_at, "domain_check_attempts": 0},
        )
        self._verdicts.pop(tenant_id, None)
        session = MonitoringSession(
            session_id=session_id,
            tenant_id=tenant_id,
            hostname=hostname,
            canonical_preference=canonical_preference,
            started_at=started_at,
            deadline=started_at + timedelta(seconds=self._window_s),
            tick_interval=self._tick_interval_s,
        )
        if not self._launch_sessions:
            logger.info(
                "domain_monitor_session_deferred tenant_id=%s hostname=%s session_id=%s",
                tenant_id,
                hostname,
                session_id,
            )
            return session
        return self._launch(session, initial_delay_s=self._initial_delay_s)

    def _launch(self, session: MonitoringSession, *, initial_delay_s: float = 0.0) -> MonitoringSession:
        self._sessions[session.tenant_id] = session
        task = asyncio.create_task(
            self._run(session, initial_delay_s), name=f"domain-monitor:{session.tenant_id}"
        )
        session.task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        set_gauge("domain_monitor_active_sessions", len(self._sessions))
        logger.info(
            "domain_monitor_session_started tenant_id=%s hostname=%s session_id=%s deadline=%s",
            session.tenant_id,
            session.hostname,
            session.session_id,
            session.deadline.isoformat(),
        )
        return session

    async def cancel(self, tenant_id: str) -> bool:
        """Stop future ticks; an in-flight tick finishes but its results are discarded.

        Returns once any status write the session already started has landed,
        so callers can write over the tenant without racing it.
        """
        session = self._sessions.pop(tenant_id, None)
        if session is None:
            return False
        session.token.cancel()
        if session.outcome is None:
            session.outcome = OUTCOME_CANCELLED
        set_gauge("domain_monitor_active_sessions", len(self._sessions))
        async with self._store.tenant_lock(tenant_id):
            pass
        self._notifier.forget_session(session.session_id)
        logger.info(
            "domain_monitor_session_cancelled tenant_id=%s hostname=%s session_id=%s",
            tenant_id,
            session.hostname,
            session.session_id,
        )
        return True

    async def check_now(self, tenant_id: str) -> Verdict:
        """Run a tick immediately.

        With an active session the tick goes through the session's tick lock
        and may finalize or time out like a scheduled one. Without a session
        the verdict is diagnostic only and never changes status.
        """
        session = self._sessions.get(tenant_id)
        if session is not None:
            await self._tick(session)
            if session.latest_verdict is not None:
                return session.latest_verdict

        async with self._store.session_factory() as db:
            tenant = await tenants_repo.get_tenant(db, tenant_id)
        if tenant is None:
            raise TenantNotFoundError(f"tenant {tenant_id} not found")
        if not tenant.custom_domain:
            raise ConfigurationError(f"tenant {tenant_id} has no custom domain requested")
        verdict = await self._collector.collect(
            tenant.custom_domain, CanonicalPreference(tenant.canonical_preference)
        )
        self._verdicts[tenant_id] = verdict
        await self._record_attempt(tenant_id, tenant.custom_domain, verdict)
        return verdict

    async def resume_active_sessions(self) -> int:
        """Recreate sessions for tenants persisted in monitoring, keeping their original deadline.

        Tracked sessions whose tenant row no longer matches (detached,
        activated, superseded with a new hostname or restarted with a new
        start time) are cancelled first.
        """
        async with self._store.session_factory() as db:
            tenants = await tenants_repo.list_tenants_by_status(db, DomainStatus.MONITORING.value)
        rows = {tenant.id: tenant for tenant in tenants}
        for tenant_id, session in list(self._sessions.items()):
            if self._matches_row(session, rows.get(tenant_id)):
                continue
            # Confirm against a fresh read; the listing may predate this session.
            async with self._store.session_factory() as db:
                fresh = await tenants_repo.get_tenant(db, tenant_id)
            if fresh is not None and fresh.domain_status == DomainStatus.MONITORING.value:
                rows[tenant_id] = fresh
                if self._matches_row(session, fresh):
                    continue
            else:
                rows.pop(tenant_id, None)
            if self._sessions.get(tenant_id) is session:
                logger.info(
                    "domain_monitor_session_stale tenant_id=%s hostname=%s session_id=%s",
                    tenant_id,
                    session.hostname,
                    session.session_id,
                )
                await self.cancel(tenant_id)
        tenants = list(rows.values())
        resumed = 0
        for tenant in tenants:
            if tenant.id in self._sessions or not tenant.custom_domain:
                continue
            started_at = _as_utc(tenant.monitoring_started_at or self._clock.now())
            self._launch(
                MonitoringSession(
                    session_id=uuid4().hex,
                    tenant_id=tenant.id,
                    hostname=tenant.custom_domain,
                    canonical_preference=CanonicalPreference(tenant.canonical_preference),
                    started_at=started_at,
                    deadline=started_at + timedelta(seconds=self._window_s),
                    tick_interval=self._tick_interval_s,
                    attempts=tenant.domain_check_attempts or 0,
                )
            )
            resumed += 1
        if resumed:
            logger.info("domain_monitor_sessions_resumed count=%s", resumed)
        return resumed

    @staticmethod
    def _matches_row(session: MonitoringSession, tenant: Tenant | None) -> bool:
        if tenant is None or tenant.custom_domain != session.hostname:
            return False
        if tenant.monitoring_started_at is None:
            return True
        return _as_utc(tenant.monitoring_started_at) == session.started_at

    async def shutdown(self, grace_s: float = 15.0) -> None:
        for tenant_id in list(self._sessions):
            await self.cancel(tenant_id)
        tasks = list(self._tasks)
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=grace_s)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    async def _run(self, session: MonitoringSession, initial_delay_s: float) -> None:
        try:
            if initial_delay_s > 0 and await session.token.sleep_or_cancel(self._clock, initial_delay_s):
                return
            while True:
                try:
                    outcome = await self._tick(session)
                except Exception as exc:  # noqa: BLE001 - one failed tick must not end the session
                    increment_counter("domain_monitor_tick_failures")
                    logger.warning(
                        "domain_monitor_tick_failed tenant_id=%s session_id=%s",
                        session.tenant_id,
                        session.session_id,
                        exc_info=exc,
                    )
                    outcome = None
                if outcome is not None:
                    return
                remaining = (session.deadline - self._clock.now()).total_seconds()
                # Clamp the last sleep so a tick lands exactly on the deadline.
                delay = min(session.tick_interval, remaining) if remaining > 0 else session.tick_interval
                if await session.token.sleep_or_cancel(self._clock, delay):
                    return
        finally:
            if self._sessions.get(session.tenant_id) is session:
                del self._sessions[session.tenant_id]
                set_gauge("domain_monitor_active_sessions", len(self._sessions))

    async def _tick(self, session: MonitoringSession) -> str | None:
        async with session.tick_lock:
            if session.token.cancelled or session.finished:
                return session.outcome or OUTCOME_CANCELLED
            session.attempts += 1
            attempt = session.attempts
            verdict = await self._collector.collect(session.hostname, session.canonical_preference)
            if session.token.cancelled:
                logger.info(
                    "domain_monitor_tick_discarded tenant_id=%s session_id=%s attempt=%s",
                    session.tenant_id,
                    session.session_id,
                    attempt,
                )
                return OUTCOME_CANCELLED

            session.latest_verdict = verdict
            self._verdicts[session.tenant_id] = verdict
            increment_counter("domain_monitor_ticks")
            logger.info(
                "domain_monitor_tick tenant_id=%s hostname=%s attempt=%s verified=%s reason=%s",
                session.tenant_id,
                session.hostname,
                attempt,
                verdict.verified,
                verdict.reason,
            )

            # Re-checked under the tenant lock so cancel() cannot be overtaken.
            def still_live() -> bool:
                return not session.token.cancelled

            if verdict.verified:
                result = await self._finalizer.finalize(
                    session.tenant_id,
                    session.hostname,
                    session_id=session.session_id,
                    reason=verdict.reason,
                    guard=still_live,
                )
                if not result.activated and session.token.cancelled:
                    return OUTCOME_CANCELLED
                return self._finish(session, OUTCOME_ACTIVATED if result.activated else OUTCOME_ALREADY_FINAL)

            await self._record_attempt(session.tenant_id, session.hostname, verdict)
            if self._clock.now() >= session.deadline:
                if not await self._time_out(session, verdict, guard=still_live) and session.token.cancelled:
                    return OUTCOME_CANCELLED
                return self._finish(session, OUTCOME_TIMED_OUT)
            return None

    def _finish(self, session: MonitoringSession, outcome: str) -> str:
        session.outcome = outcome
        # Wakes the session loop when the tick came from check_now().
        session.token.cancel()
        if self._sessions.get(session.tenant_id) is session:
            del self._sessions[session.tenant_id]
            set_gauge("domain_monitor_active_sessions", len(self._sessions))
        self._notifier.forget_session(session.session_id)
        logger.info(
            "domain_monitor_session_finished tenant_id=%s session_id=%s outcome=%s attempts=%s",
            session.tenant_id,
            session.session_id,
            outcome,
            session.attempts,
        )
        return outcome

    async def _time_out(
        self,
        session: MonitoringSession,
        verdict: Verdict,
        *,
        guard: Callable[[], bool] | None = None,
    ) -> bool:
        try:
            await self._store.transition(
                session.tenant_id,
                DomainStatus.TIMED_OUT,
                expected_from={DomainStatus.MONITORING},
                hostname=session.hostname,
                reason=verdict.reason,
                session_id=session.session_id,
                guard=guard,
            )
        except (FinalizationConflict, InvalidTransitionError) as exc:
            # Someone else moved the tenant on; escalation belongs to whoever did.
            logger.info("domain_monitor_timeout_skipped tenant_id=%s detail=%s", session.tenant_id, exc)
            return False
        increment_counter("domain_monitor_timeouts")
        await self._notifier.notify(
            EVENT_TIMEOUT_HELP,
            tenant_id=session.tenant_id,
            hostname=session.hostname,
            session_id=session.session_id,
            payload={
                "reason": verdict.reason,
                "message": describe_verdict(verdict),
                "attempts": session.attempts,
                "started_at": session.started_at.isoformat(),
            },
        )
        return True

    async def _record_attempt(self, tenant_id: str, hostname: str, verdict: Verdict) -> None:
        try:
            async with self._store.session_factory() as db:
                await tenants_repo.record_check_attempt(
                    db,
                    tenant_id=tenant_id,
                    hostname=hostname,
                    reason=verdict.reason,
                    checked_at=verdict.decided_at or self._clock.now(),
                )
                await db.commit()
        except SQLAlchemyError as exc:
            # Diagnostics only; the status machine does not depend on them.
            logger.warning("domain_check_attempt_not_recorded tenant_id=%s", tenant_id, exc_info=exc)
