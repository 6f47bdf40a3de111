from __future__ import annotations

from dataclasses import dataclass
import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from domainpilot.persistence.db import SessionLocal
from domainpilot.providers.dns.base import DnsResolver
from domainpilot.providers.dns.factory import get_dns_resolver, get_public_resolvers
from domainpilot.providers.notify.base import Notifier
from domainpilot.providers.notify.factory import get_notifier
from domainpilot.providers.registrar.base import RegistrarClient
from domainpilot.providers.registrar.factory import get_registrar_client
from domainpilot.services.finalizer import ActivationFinalizer, DomainStatusStore
from domainpilot.services.monitor import DomainMonitor
from domainpilot.services.notifications import SessionNotifier
from domainpilot.services.scheduler import Clock, SystemClock
from domainpilot.services.setup import DomainSetupService
from domainpilot.services.verification.collector import SignalCollector
from domainpilot.services.verification.dns_checker import DnsRecordChecker
from domainpilot.services.verification.health_probe import HealthProbe
from domainpilot.services.verification.registrar_check import RegistrarCheck


@dataclass(slots=True)
class DomainServices:
    store: DomainStatusStore
    notifier: SessionNotifier
    finalizer: ActivationFinalizer
    collector: SignalCollector
    monitor: DomainMonitor
    setup: DomainSetupService
    registrar: RegistrarClient
    health_probe: HealthProbe

    async def aclose(self) -> None:
        await self.monitor.shutdown()
        await self.health_probe.aclose()
        close = getattr(self.registrar, "aclose", None)
        if close is not None:
            await close()


def build_domain_services(
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    clock: Clock | None = None,
    resolver: DnsResolver | None = None,
    registrar: RegistrarClient | None = None,
    notifier: Notifier | None = None,
    health_client: httpx.AsyncClient | None = None,
    propagation_resolvers: dict[str, DnsResolver] | None = None,
    launch_sessions: bool | None = None,
) -> DomainServices:
    """Assemble the verification engine; collaborators default to the configured providers.

    ``launch_sessions`` defaults to MONITOR_RUN_IN_API; the monitor worker passes True.
    """
    session_factory = session_factory or SessionLocal
    clock = clock or SystemClock()
    registrar = registrar if registrar is not None else get_registrar_client()
    session_notifier = SessionNotifier(notifier if notifier is not None else get_notifier(), now=clock.now)

    store = DomainStatusStore(session_factory, now=clock.now)
    finalizer = ActivationFinalizer(store, session_notifier)
    dns_checker = DnsRecordChecker(resolver if resolver is not None else get_dns_resolver(), now=clock.now)
    health_probe = HealthProbe(health_client, now=clock.now)
    collector = SignalCollector(
        dns_checker=dns_checker,
        registrar_check=RegistrarCheck(registrar, now=clock.now),
        health_probe=health_probe,
        now=clock.now,
    )
    monitor = DomainMonitor(
        collector=collector,
        store=store,
        finalizer=finalizer,
        notifier=session_notifier,
        clock=clock,
        launch_sessions=launch_sessions,
    )
    setup = DomainSetupService(
        store=store,
        monitor=monitor,
        finalizer=finalizer,
        registrar=registrar,
        notifier=session_notifier,
        dns_checker=dns_checker,
        propagation_resolvers=propagation_resolvers if propagation_resolvers is not None else get_public_resolvers(),
    )
    return DomainServices(
        store=store,
        notifier=session_notifier,
        finalizer=finalizer,
        collector=collector,
        monitor=monitor,
        setup=setup,
        registrar=registrar,
        health_probe=health_probe,
    )
