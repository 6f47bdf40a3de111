from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError

from domainpilot.core.config import get_settings
from domainpilot.core.errors import ConfigurationError, DomainPilotError, FinalizationConflict, TenantNotFoundError
from domainpilot.domain.hostnames import (
    canonical_domain,
    derive_apex,
    is_platform_hostname,
    normalize_hostname,
    www_variant,
)
from domainpilot.domain.models import Tenant
from domainpilot.domain.state import CanonicalPreference, DomainRequest, DomainStatus
from domainpilot.persistence.repos import tenants as tenants_repo
from domainpilot.providers.dns.base import DnsResolver
from domainpilot.providers.notify.base import EVENT_SETUP_INSTRUCTIONS
from domainpilot.providers.registrar.base import RegistrarClient
from domainpilot.services.finalizer import ActivationFinalizer, DomainStatusStore, FinalizeResult
from domainpilot.services.monitor import DomainMonitor, MonitoringSession
from domainpilot.services.notifications import SessionNotifier
from domainpilot.services.verification.dns_checker import DnsRecordChecker, verify_cname_multiple
from domainpilot.services.verification.dual_domain import DualDomainVerifier, status_summary
from domainpilot.services.verification.strategy import describe_reason, describe_verdict


logger = logging.getLogger(__name__)

# Columns reset whenever a new hostname replaces the tenant's current request.
_REQUEST_RESET_VALUES: dict[str, Any] = {
    "monitoring_started_at": None,
    "domain_verified_at": None,
    "domain_check_attempts": 0,
    "last_verdict_reason": None,
    "last_checked_at": None,
    "registrar_domain_id": None,
}


@dataclass(slots=True)
class SetupResult:
    request: DomainRequest
    session: MonitoringSession
    instructions: dict[str, Any]


def _parse_preference(value: str | CanonicalPreference) -> CanonicalPreference:
    try:
        return CanonicalPreference(value)
    except ValueError as exc:
        raise ConfigurationError(f"canonical_preference must be 'apex' or 'www', got {value!r}") from exc


def _registered_domain(tenant: Tenant) -> str | None:
    if not tenant.custom_domain:
        return None
    return canonical_domain(tenant.custom_domain, CanonicalPreference(tenant.canonical_preference))


def dns_instructions(hostname: str, preference: CanonicalPreference) -> dict[str, Any]:
    """Records the tenant must create at their DNS provider."""
    settings = get_settings()
    apex = derive_apex(hostname)
    records = [
        {"type": "A", "name": "@", "host": apex, "value": settings.platform_apex_ip},
        {"type": "CNAME", "name": "www", "host": www_variant(apex), "value": settings.platform_cname_target},
    ]
    if hostname not in (apex, www_variant(apex)):
        label = hostname[: -len(apex) - 1]
        records.append(
            {"type": "CNAME", "name": label, "host": hostname, "value": settings.platform_cname_target}
        )
    return {
        "hostname": hostname,
        "canonical_domain": canonical_domain(hostname, preference),
        "canonical_preference": preference.value,
        "records": records,
    }


class DomainSetupService:
    """Entry points for tenant-facing and operator domain actions."""

    def __init__(
        self,
        *,
        store: DomainStatusStore,
        monitor: DomainMonitor,
        finalizer: ActivationFinalizer,
        registrar: RegistrarClient,
        notifier: SessionNotifier,
        dns_checker: DnsRecordChecker,
        propagation_resolvers: dict[str, DnsResolver] | None = None,
    ) -> None:
        self._store = store
        self._monitor = monitor
        self._finalizer = finalizer
        self._registrar = registrar
        self._notifier = notifier
        self._dns_checker = dns_checker
        self._propagation_resolvers = propagation_resolvers

    @property
    def monitor(self) -> DomainMonitor:
        return self._monitor

    async def _load_tenant(self, tenant_id: str) -> Tenant:
        async with self._store.session_factory() as session:
            tenant = await tenants_repo.get_tenant(session, tenant_id)
        if tenant is None:
            raise TenantNotFoundError(f"tenant {tenant_id} not found")
        return tenant

    def validate_request(
        self,
        tenant_id: str,
        raw_hostname: str,
        canonical_preference: str | CanonicalPreference = CanonicalPreference.APEX,
    ) -> DomainRequest:
        settings = get_settings()
        hostname = normalize_hostname(raw_hostname)
        preference = _parse_preference(canonical_preference)
        if is_platform_hostname(hostname, settings.platform_domain):
            raise ConfigurationError(f"{hostname} is a platform hostname and cannot be used as a custom domain")
        if not settings.platform_cname_target or not settings.platform_apex_ip:
            raise ConfigurationError("platform CNAME target and apex IP must be configured")
        return DomainRequest(
            tenant_id=tenant_id,
            hostname=hostname,
            canonical_preference=preference,
            requested_at=self._store.now(),
        )

    async def request_domain(
        self,
        tenant_id: str,
        raw_hostname: str,
        canonical_preference: str | CanonicalPreference = CanonicalPreference.APEX,
    ) -> SetupResult:
        """Create or supersede the tenant's custom domain request and start monitoring it.

        Raises ConfigurationError for malformed or unusable hostnames before
        anything is written. Registrar registration is best effort.
        """
        request = self.validate_request(tenant_id, raw_hostname, canonical_preference)
        previous = await self._load_tenant(tenant_id)
        async with self._store.session_factory() as session:
            owner = await tenants_repo.find_tenant_by_custom_domain(session, request.hostname)
        if owner is not None and owner.id != tenant_id:
            raise ConfigurationError(f"{request.hostname} is already in use by another tenant")

        # The registrar record can be reused when it was created for the same canonical domain.
        keep_registration = bool(previous.registrar_domain_id) and _registered_domain(
            previous
        ) == canonical_domain(request.hostname, request.canonical_preference)
        reset_values = dict(_REQUEST_RESET_VALUES)
        if keep_registration:
            del reset_values["registrar_domain_id"]

        # Cancel first so no tick of the old session lands after the supersede.
        await self._monitor.cancel(tenant_id)
        await self._store.transition(
            tenant_id,
            DomainStatus.PENDING_VERIFICATION,
            supersede=True,
            values={
                **reset_values,
                "custom_domain": request.hostname,
                "canonical_preference": request.canonical_preference.value,
                "domain_requested_at": request.requested_at,
            },
        )
        if keep_registration:
            logger.info(
                "registrar_domain_reused tenant_id=%s domain_id=%s",
                tenant_id,
                previous.registrar_domain_id,
            )
        else:
            if previous.registrar_domain_id:
                await self._release_registrar_domain(tenant_id, previous.registrar_domain_id)
            await self._register_with_registrar(request)

        session = await self._monitor.start(request)
        instructions = dns_instructions(request.hostname, request.canonical_preference)
        await self._notifier.notify(
            EVENT_SETUP_INSTRUCTIONS,
            tenant_id=tenant_id,
            hostname=request.hostname,
            session_id=session.session_id,
            payload=instructions,
        )
        return SetupResult(request=request, session=session, instructions=instructions)

    async def restart(self, tenant_id: str) -> MonitoringSession:
        return await self._monitor.restart(tenant_id)

    async def check(self, tenant_id: str) -> dict[str, Any]:
        await self._monitor.check_now(tenant_id)
        return await self.status(tenant_id)

    async def propagation(self, tenant_id: str) -> dict[str, Any]:
        """DNS diagnostics for the setup screen: per-record guidance and per-resolver agreement."""
        tenant = await self._load_tenant(tenant_id)
        if not tenant.custom_domain:
            raise ConfigurationError(f"tenant {tenant_id} has no custom domain requested")
        preference = CanonicalPreference(tenant.canonical_preference)
        dual = await DualDomainVerifier(self._dns_checker).verify_both(tenant.custom_domain, preference)
        canonical = canonical_domain(tenant.custom_domain, preference)
        summary, per_resolver = await verify_cname_multiple(
            canonical,
            self._propagation_resolvers or {},
            cname_target=self._dns_checker.cname_target,
            apex_ip=self._dns_checker.apex_ip,
        )
        return {
            "hostname": tenant.custom_domain,
            "canonical_domain": canonical,
            "records": status_summary(
                dual, cname_target=self._dns_checker.cname_target, apex_ip=self._dns_checker.apex_ip
            ),
            "propagation": {
                "verified": summary.verified,
                "detail": summary.detail,
                "resolvers": {label: result.detail for label, result in per_resolver.items()},
            },
        }

    async def remove(self, tenant_id: str) -> DomainStatus:
        """Cancel monitoring and detach the custom domain; the tenant falls back to its subdomain."""
        tenant = await self._load_tenant(tenant_id)
        await self._monitor.cancel(tenant_id)
        try:
            await self._store.transition(
                tenant_id,
                DomainStatus.NONE,
                reason="removed",
                values={
                    **_REQUEST_RESET_VALUES,
                    "custom_domain": None,
                    "domain_requested_at": None,
                },
            )
        except FinalizationConflict:
            # Already detached.
            return DomainStatus.NONE
        if tenant.registrar_domain_id:
            await self._release_registrar_domain(tenant_id, tenant.registrar_domain_id)
        return DomainStatus.NONE

    async def force_activate(self, tenant_id: str, *, reason: str = "admin_force_activated") -> FinalizeResult:
        session = self._monitor.active_session(tenant_id)
        session_id = session.session_id if session is not None else f"admin-{uuid4().hex}"
        await self._monitor.cancel(tenant_id)
        result = await self._finalizer.finalize(tenant_id, force=True, session_id=session_id, reason=reason)
        logger.info("domain_force_activate tenant_id=%s activated=%s", tenant_id, result.activated)
        return result

    async def status(self, tenant_id: str) -> dict[str, Any]:
        tenant = await self._load_tenant(tenant_id)
        verdict = self._monitor.latest_verdict(tenant_id)
        session = self._monitor.active_session(tenant_id)
        status = DomainStatus(tenant.domain_status)
        if status == DomainStatus.VERIFIED_ACTIVE:
            message = "Your custom domain is active."
        elif status == DomainStatus.TIMED_OUT:
            message = "We could not verify your domain in time. Check your DNS records and restart, or contact support."
        elif status == DomainStatus.NONE:
            message = "No custom domain configured."
        elif verdict is not None:
            message = describe_verdict(verdict)
        else:
            message = describe_reason(tenant.last_verdict_reason)
        return {
            "tenant_id": tenant.id,
            "subdomain": tenant.subdomain,
            "custom_domain": tenant.custom_domain,
            "canonical_preference": tenant.canonical_preference,
            "status": status.value,
            "message": message,
            "verdict": verdict.to_dict() if verdict is not None else None,
            "session": session.to_dict() if session is not None else None,
            "check_attempts": tenant.domain_check_attempts,
            "last_verdict_reason": tenant.last_verdict_reason,
            "last_checked_at": tenant.last_checked_at.isoformat() if tenant.last_checked_at else None,
            "requested_at": tenant.domain_requested_at.isoformat() if tenant.domain_requested_at else None,
            "verified_at": tenant.domain_verified_at.isoformat() if tenant.domain_verified_at else None,
        }

    async def _register_with_registrar(self, request: DomainRequest) -> None:
        domain = canonical_domain(request.hostname, request.canonical_preference)
        try:
            record = await self._registrar.add_domain(domain)
        except DomainPilotError as exc:
            # Verification still proceeds on DNS + health when the registrar is unreachable.
            logger.warning("registrar_add_domain_failed tenant_id=%s domain=%s error=%s", request.tenant_id, domain, exc)
            return
        if not record.id:
            return
        try:
            async with self._store.session_factory() as session:
                await tenants_repo.set_registrar_domain_id(
                    session, tenant_id=request.tenant_id, domain_id=record.id
                )
                await session.commit()
        except SQLAlchemyError as exc:
            logger.warning("registrar_domain_id_not_saved tenant_id=%s", request.tenant_id, exc_info=exc)

    async def _release_registrar_domain(self, tenant_id: str, domain_id: str) -> None:
        try:
            await self._registrar.remove_domain(domain_id)
        except DomainPilotError as exc:
            logger.warning("registrar_remove_domain_failed tenant_id=%s domain_id=%s error=%s", tenant_id, domain_id, exc)
