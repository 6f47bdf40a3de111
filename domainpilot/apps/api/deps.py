from __future__ import annotations

from fastapi import Request

from domainpilot.services.setup import DomainSetupService
from domainpilot.services.wiring import DomainServices


def get_domain_services(request: Request) -> DomainServices:
    # Built once in the app lifespan and shared by every request.
    return request.app.state.domain_services


def get_setup_service(request: Request) -> DomainSetupService:
    return get_domain_services(request).setup
