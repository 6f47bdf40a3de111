from __future__ import annotations

import os

# Settings are read at import time by the db module; point everything at local fakes first.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./.domainpilot-test.db")
os.environ.setdefault("CB_REDIS_ENABLED", "false")
os.environ.setdefault("REGISTRAR_PROVIDER", "fake")
os.environ.setdefault("NOTIFIER_PROVIDER", "fake")
os.environ.setdefault("MONITOR_INITIAL_DELAY_S", "0")

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from domainpilot.core.config import get_settings
from domainpilot.domain.models import Base
from domainpilot.providers.dns.fake import FakeDnsResolver
from domainpilot.providers.notify.fake import FakeNotifier
from domainpilot.providers.registrar.fake import FakeRegistrarClient
from domainpilot.services.scheduler import FakeClock
from domainpilot.services.telemetry import reset_telemetry
from domainpilot.services.wiring import build_domain_services
from domainpilot.tests.utils.fakes import HealthStub
from domainpilot.tests.utils.tenants import create_test_tenant


@pytest.fixture(autouse=True)
def reset_process_state() -> None:
    # Each test sees fresh settings and zeroed counters.
    get_settings.cache_clear()
    reset_telemetry()
    yield
    get_settings.cache_clear()


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'domainpilot.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def resolver() -> FakeDnsResolver:
    return FakeDnsResolver()


@pytest.fixture
def registrar() -> FakeRegistrarClient:
    return FakeRegistrarClient()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def health() -> HealthStub:
    return HealthStub()


@pytest.fixture
async def services(session_factory, clock, resolver, registrar, notifier, health):
    built = build_domain_services(
        session_factory=session_factory,
        clock=clock,
        resolver=resolver,
        registrar=registrar,
        notifier=notifier,
        health_client=health.client(),
        propagation_resolvers={"8.8.8.8": resolver},
    )
    yield built
    await built.aclose()


@pytest.fixture
async def tenant_id(services) -> str:
    return await create_test_tenant(services.store, "t1")
