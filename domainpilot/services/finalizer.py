from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Any, AsyncIterator, Callable, Iterable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from domainpilot.core.errors import FinalizationConflict, InvalidTransitionError, TenantNotFoundError
from domainpilot.domain.state import FORCE_ACTIVATE_FROM, DomainStatus, transition_allowed
from domainpilot.persistence.repos import tenants as tenants_repo
from domainpilot.providers.notify.base import EVENT_ACTIVATION_SUCCESS
from domainpilot.services.notifications import SessionNotifier
from domainpilot.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class TransitionResult:
    tenant_id: str
    from_status: DomainStatus
    to_status: DomainStatus
    hostname: str | None


@dataclass(slots=True)
class FinalizeResult:
    activated: bool
    status: DomainStatus | None = None
    reason: str | None = None


class DomainStatusStore:
    """The only writer of Tenant.domain_status.

    Every write is a read-modify-write under a per-tenant asyncio lock, a row
    lock (SELECT ... FOR UPDATE) and a compare-and-set UPDATE, so concurrent
    writers in other processes lose cleanly instead of double-transitioning.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._now = now or _utc_now
        # Per-tenant locks live only while someone holds or waits on them.
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory

    def now(self) -> datetime:
        return self._now()

    @property
    def tracked_lock_count(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def tenant_lock(self, tenant_id: str) -> AsyncIterator[None]:
        """Serialize status writes for one tenant within this process."""
        lock = self._locks.get(tenant_id)
        if lock is None:
            lock = self._locks[tenant_id] = asyncio.Lock()
        self._lock_users[tenant_id] = self._lock_users.get(tenant_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[tenant_id] -= 1
            if not self._lock_users[tenant_id]:
                del self._lock_users[tenant_id]
                del self._locks[tenant_id]

    async def current_status(self, tenant_id: str) -> DomainStatus:
        async with self._session_factory() as session:
            tenant = await tenants_repo.get_tenant(session, tenant_id)
        if tenant is None:
            raise TenantNotFoundError(f"tenant {tenant_id} not found")
        return DomainStatus(tenant.domain_status)

    async def transition(
        self,
        tenant_id: str,
        target: DomainStatus,
        *,
        expected_from: Iterable[DomainStatus] | None = None,
        hostname: str | None = None,
        reason: str | None = None,
        session_id: str | None = None,
        supersede: bool = False,
        force: bool = False,
        values: dict[str, Any] | None = None,
        guard: Callable[[], bool] | None = None,
    ) -> TransitionResult:
        """Move a tenant to ``target``.

        ``hostname`` pins the write to the tenant's current custom domain; a
        mismatch means the request was superseded and raises
        FinalizationConflict, as does finding the tenant already in ``target``.
        Edges outside the lifecycle table raise InvalidTransitionError.
        ``guard`` is checked once the tenant lock is held; returning False
        abandons the write with FinalizationConflict.
        """
        expected = frozenset(expected_from) if expected_from is not None else None
        async with self.tenant_lock(tenant_id):
            if guard is not None and not guard():
                raise FinalizationConflict(f"tenant {tenant_id} write abandoned by a cancelled session")
            async with self._session_factory() as session:
                try:
                    tenant = await tenants_repo.get_tenant_for_update(session, tenant_id)
                    if tenant is None:
                        raise TenantNotFoundError(f"tenant {tenant_id} not found")
                    current = DomainStatus(tenant.domain_status)
                    if supersede and reason is None:
                        reason = "superseded" if current != DomainStatus.NONE else "requested"

                    if hostname is not None and not supersede and tenant.custom_domain != hostname:
                        raise FinalizationConflict(
                            f"tenant {tenant_id} domain changed from {hostname} to {tenant.custom_domain}"
                        )
                    if current == target and not supersede:
                        raise FinalizationConflict(f"tenant {tenant_id} already {target.value}")
                    if expected is not None and current not in expected:
                        raise InvalidTransitionError(current.value, target.value)
                    allowed = transition_allowed(current, target, supersede=supersede) or (
                        force and target == DomainStatus.VERIFIED_ACTIVE and current in FORCE_ACTIVATE_FROM
                    )
                    if not allowed:
                        raise InvalidTransitionError(current.value, target.value)

                    swapped = await tenants_repo.compare_and_set_status(
                        session,
                        tenant_id=tenant_id,
                        expected=current.value,
                        target=target.value,
                        values={**(values or {}), "updated_at": self._now()},
                    )
                    if not swapped:
                        raise FinalizationConflict(f"tenant {tenant_id} status changed concurrently")
                    event_hostname = (values or {}).get("custom_domain", tenant.custom_domain)
                    await tenants_repo.add_status_event(
                        session,
                        tenant_id=tenant_id,
                        hostname=event_hostname,
                        from_status=current.value,
                        to_status=target.value,
                        reason=reason,
                        session_id=session_id,
                    )
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise

        increment_counter(f"domain_transition_{target.value}")
        logger.info(
            "domain_status_transition tenant_id=%s from=%s to=%s reason=%s session_id=%s",
            tenant_id,
            current.value,
            target.value,
            reason,
            session_id,
        )
        return TransitionResult(
            tenant_id=tenant_id,
            from_status=current,
            to_status=target,
            hostname=event_hostname,
        )


class ActivationFinalizer:
    def __init__(self, store: DomainStatusStore, notifier: SessionNotifier) -> None:
        self._store = store
        self._notifier = notifier

    async def finalize(
        self,
        tenant_id: str,
        hostname: str | None = None,
        *,
        force: bool = False,
        session_id: str | None = None,
        reason: str = "verified",
        guard: Callable[[], bool] | None = None,
    ) -> FinalizeResult:
        """Activate the tenant's custom domain exactly once.

        Losing a race, finding the domain already active, or finding that the
        hostname was superseded all return ``activated=False``. Only the winner
        sends activation_success. A scheduled finalize against a tenant that
        left monitoring is also a no-op; a forced one from a state operators
        cannot activate raises InvalidTransitionError.
        """
        expected = FORCE_ACTIVATE_FROM if force else frozenset({DomainStatus.MONITORING})
        try:
            result = await self._store.transition(
                tenant_id,
                DomainStatus.VERIFIED_ACTIVE,
                expected_from=expected,
                hostname=hostname,
                reason=reason,
                session_id=session_id,
                force=force,
                guard=guard,
                values={"domain_verified_at": self._store.now(), "last_verdict_reason": reason},
            )
        except FinalizationConflict as exc:
            increment_counter("finalize_noop")
            logger.info("domain_finalize_noop tenant_id=%s detail=%s", tenant_id, exc)
            return FinalizeResult(activated=False, reason=str(exc))
        except InvalidTransitionError as exc:
            if force:
                raise
            increment_counter("finalize_noop")
            logger.info("domain_finalize_noop tenant_id=%s detail=%s", tenant_id, exc)
            return FinalizeResult(activated=False, status=DomainStatus(exc.current), reason=str(exc))

        await self._notifier.notify(
            EVENT_ACTIVATION_SUCCESS,
            tenant_id=tenant_id,
            hostname=result.hostname or hostname or "",
            session_id=session_id or f"finalize:{tenant_id}",
            payload={"reason": reason, "forced": force},
        )
        return FinalizeResult(activated=True, status=DomainStatus.VERIFIED_ACTIVE, reason=reason)
