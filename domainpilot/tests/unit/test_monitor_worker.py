from __future__ import annotations

import asyncio

import pytest

from domainpilot.domain.state import DomainStatus
from domainpilot.services.monitor_worker import run_domain_monitor_loop, run_monitor_rescan_cycle
from domainpilot.services.scheduler import FakeClock
from domainpilot.services.wiring import build_domain_services
from domainpilot.tests.utils.fakes import wait_until
from domainpilot.tests.utils.tenants import move_to_status


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(auto_advance=False)


@pytest.fixture
async def api_services(session_factory, clock, resolver, registrar, notifier, health):
    # The API half of a worker deployment: it writes monitoring but polls nothing.
    built = build_domain_services(
        session_factory=session_factory,
        clock=clock,
        resolver=resolver,
        registrar=registrar,
        notifier=notifier,
        health_client=health.client(),
        propagation_resolvers={},
        launch_sessions=False,
    )
    yield built
    await built.aclose()


@pytest.mark.asyncio
async def test_rescan_picks_up_monitoring_tenants(services, tenant_id) -> None:
    await move_to_status(services.store, tenant_id, DomainStatus.MONITORING)

    assert await run_monitor_rescan_cycle(services) == 1
    assert services.monitor.active_tenant_ids() == [tenant_id]
    assert await run_monitor_rescan_cycle(services) == 0


@pytest.mark.asyncio
async def test_worker_loop_stops_and_closes_sessions(services, tenant_id) -> None:
    await move_to_status(services.store, tenant_id, DomainStatus.MONITORING)
    stop = asyncio.Event()

    worker = asyncio.create_task(run_domain_monitor_loop(services, stop_event=stop))
    await wait_until(lambda: services.monitor.active_session(tenant_id) is not None)
    stop.set()
    await asyncio.wait_for(worker, timeout=5)

    assert services.monitor.active_tenant_ids() == []
    assert await services.store.current_status(tenant_id) == DomainStatus.MONITORING


@pytest.mark.asyncio
async def test_api_leaves_polling_to_worker_and_worker_follows_supersede(api_services, services, tenant_id) -> None:
    assert api_services.monitor.launches_sessions is False
    result = await api_services.setup.request_domain(tenant_id, "old-shop.com")

    assert result.session.task is None
    assert api_services.monitor.active_session(tenant_id) is None
    assert await services.store.current_status(tenant_id) == DomainStatus.MONITORING

    assert await run_monitor_rescan_cycle(services) == 1
    first = services.monitor.active_session(tenant_id)
    assert first.hostname == "old-shop.com"

    await api_services.setup.request_domain(tenant_id, "new-shop.com")
    assert await run_monitor_rescan_cycle(services) == 1

    assert first.token.cancelled
    assert services.monitor.active_session(tenant_id).hostname == "new-shop.com"
    assert api_services.monitor.active_tenant_ids() == []


@pytest.mark.asyncio
async def test_worker_drops_sessions_restarted_or_removed_elsewhere(api_services, services, tenant_id, clock) -> None:
    await api_services.setup.request_domain(tenant_id, "example.com")
    assert await run_monitor_rescan_cycle(services) == 1
    first = services.monitor.active_session(tenant_id)

    clock.advance(60)
    await api_services.setup.request_domain(tenant_id, "example.com")
    assert await run_monitor_rescan_cycle(services) == 1
    second = services.monitor.active_session(tenant_id)
    assert first.token.cancelled
    assert second.started_at == clock.now()

    await api_services.setup.remove(tenant_id)
    assert await run_monitor_rescan_cycle(services) == 0
    assert second.token.cancelled
    assert services.monitor.active_session(tenant_id) is None
