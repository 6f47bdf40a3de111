from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domainpilot.domain.models import DomainStatusEvent, Tenant


async def get_tenant(session: AsyncSession, tenant_id: str) -> Tenant | None:
    result = await session.execute(select(Tenant).where(Tenant.id == tenant_id))
    return result.scalar_one_or_none()


async def get_tenant_for_update(session: AsyncSession, tenant_id: str) -> Tenant | None:
    # Row lock on databases that support it; SQLite ignores FOR UPDATE.
    result = await session.execute(
        select(Tenant).where(Tenant.id == tenant_id).with_for_update()
    )
    return result.scalar_one_or_none()


async def find_tenant_by_custom_domain(session: AsyncSession, hostname: str) -> Tenant | None:
    result = await session.execute(select(Tenant).where(Tenant.custom_domain == hostname).limit(1))
    return result.scalar_one_or_none()


async def create_tenant(
    session: AsyncSession,
    *,
    tenant_id: str,
    name: str,
    subdomain: str,
) -> Tenant:
    tenant = Tenant(id=tenant_id, name=name, subdomain=subdomain, domain_status="none")
    session.add(tenant)
    await session.flush()
    return tenant


async def list_tenants_by_status(session: AsyncSession, status: str) -> list[Tenant]:
    # Stable ordering keeps session resume deterministic across restarts.
    result = await session.execute(
        select(Tenant).where(Tenant.domain_status == status).order_by(Tenant.id)
    )
    return list(result.scalars().all())


async def compare_and_set_status(
    session: AsyncSession,
    *,
    tenant_id: str,
    expected: str,
    target: str,
    values: dict | None = None,
) -> bool:
    # Conditional update so a concurrent writer that got there first makes this a no-op.
    result = await session.execute(
        update(Tenant)
        .where(Tenant.id == tenant_id, Tenant.domain_status == expected)
        .values(domain_status=target, **(values or {}))
    )
    return result.rowcount == 1


async def record_check_attempt(
    session: AsyncSession,
    *,
    tenant_id: str,
    hostname: str,
    reason: str,
    checked_at: datetime,
) -> None:
    # Diagnostics only; scoped to the hostname so a superseded session cannot overwrite them.
    await session.execute(
        update(Tenant)
        .where(Tenant.id == tenant_id, Tenant.custom_domain == hostname)
        .values(
            domain_check_attempts=Tenant.domain_check_attempts + 1,
            last_verdict_reason=reason,
            last_checked_at=checked_at,
        )
    )


async def set_registrar_domain_id(session: AsyncSession, *, tenant_id: str, domain_id: str | None) -> None:
    await session.execute(
        update(Tenant).where(Tenant.id == tenant_id).values(registrar_domain_id=domain_id)
    )


async def add_status_event(
    session: AsyncSession,
    *,
    tenant_id: str,
    hostname: str | None,
    from_status: str,
    to_status: str,
    reason: str | None,
    session_id: str | None,
) -> DomainStatusEvent:
    event = DomainStatusEvent(
        tenant_id=tenant_id,
        hostname=hostname,
        from_status=from_status,
        to_status=to_status,
        reason=reason,
        session_id=session_id,
    )
    session.add(event)
    await session.flush()
    return event


async def list_status_events(session: AsyncSession, tenant_id: str) -> list[DomainStatusEvent]:
    result = await session.execute(
        select(DomainStatusEvent)
        .where(DomainStatusEvent.tenant_id == tenant_id)
        .order_by(DomainStatusEvent.id)
    )
    return list(result.scalars().all())
