from __future__ import annotations

from datetime import timedelta

import pytest

from domainpilot.domain.state import DomainStatus
from domainpilot.services.monitor import OUTCOME_TIMED_OUT
from domainpilot.tests.utils.fakes import wait_until


@pytest.mark.asyncio
async def test_unverified_domain_times_out_after_window(services, tenant_id, clock, notifier) -> None:
    started = clock.now()
    result = await services.setup.request_domain(tenant_id, "example.com")
    session = result.session

    await wait_until(lambda: session.finished)

    assert session.outcome == OUTCOME_TIMED_OUT
    # Ticks at 0, 5, 10 ... 60 minutes.
    assert session.attempts == 13
    assert clock.now() >= started + timedelta(hours=1)
    assert await services.store.current_status(tenant_id) == DomainStatus.TIMED_OUT

    help_events = notifier.events("timeout_help")
    assert len(help_events) == 1
    assert help_events[0].session_id == session.session_id
    assert help_events[0].payload["reason"] == "dns_unverified"
    assert help_events[0].payload["attempts"] == 13
    assert notifier.events("activation_success") == []


@pytest.mark.asyncio
async def test_verified_domain_never_times_out(services, tenant_id, resolver, registrar, notifier) -> None:
    resolver.a_records["example.com"] = ["216.24.57.1"]
    registrar.mark_verified("example.com")

    result = await services.setup.request_domain(tenant_id, "example.com")
    await wait_until(lambda: result.session.finished)

    assert result.session.attempts == 1
    assert await services.store.current_status(tenant_id) == DomainStatus.VERIFIED_ACTIVE
    assert notifier.events("timeout_help") == []
