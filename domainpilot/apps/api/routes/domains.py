from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from domainpilot.apps.api.deps import get_setup_service
from domainpilot.apps.api.errors import domain_error_to_http
from domainpilot.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from domainpilot.apps.api.response import SuccessEnvelope, success_response
from domainpilot.core.errors import DomainPilotError
from domainpilot.services.setup import DomainSetupService


router = APIRouter(tags=["domains"], responses=DEFAULT_ERROR_RESPONSES)


class DomainRequestBody(BaseModel):
    hostname: str = Field(min_length=1, max_length=300)
    canonical_preference: str = Field(default="apex")

    # tenant_id comes from the path only.
    model_config = {"extra": "forbid"}


class DomainStatusResponse(BaseModel):
    tenant_id: str
    subdomain: str
    custom_domain: str | None
    canonical_preference: str
    status: str
    message: str
    verdict: dict[str, Any] | None = None
    session: dict[str, Any] | None = None
    check_attempts: int = 0
    last_verdict_reason: str | None = None
    last_checked_at: str | None = None
    requested_at: str | None = None
    verified_at: str | None = None
    instructions: dict[str, Any] | None = None


class DomainRemovedResponse(BaseModel):
    tenant_id: str
    status: str


class DomainActivateResponse(BaseModel):
    tenant_id: str
    activated: bool
    status: str | None
    reason: str | None = None


class DomainPropagationResponse(BaseModel):
    hostname: str
    canonical_domain: str
    records: dict[str, Any]
    propagation: dict[str, Any]


@router.put(
    "/tenants/{tenant_id}/domain",
    response_model=SuccessEnvelope[DomainStatusResponse],
)
async def request_domain(
    tenant_id: str,
    payload: DomainRequestBody,
    request: Request,
    setup: DomainSetupService = Depends(get_setup_service),
) -> dict:
    # Creating a request for a tenant that already has one supersedes it.
    try:
        result = await setup.request_domain(tenant_id, payload.hostname, payload.canonical_preference)
        status = await setup.status(tenant_id)
    except DomainPilotError as exc:
        raise domain_error_to_http(exc) from exc
    data = DomainStatusResponse(**status, instructions=result.instructions)
    return success_response(request=request, data=data.model_dump())


@router.get(
    "/tenants/{tenant_id}/domain",
    response_model=SuccessEnvelope[DomainStatusResponse],
)
async def get_domain_status(
    tenant_id: str,
    request: Request,
    setup: DomainSetupService = Depends(get_setup_service),
) -> dict:
    # Read-only: reports the last verdict without forcing a tick.
    try:
        status = await setup.status(tenant_id)
    except DomainPilotError as exc:
        raise domain_error_to_http(exc) from exc
    return success_response(request=request, data=DomainStatusResponse(**status).model_dump())


@router.post(
    "/tenants/{tenant_id}/domain/restart",
    response_model=SuccessEnvelope[DomainStatusResponse],
)
async def restart_domain_monitoring(
    tenant_id: str,
    request: Request,
    setup: DomainSetupService = Depends(get_setup_service),
) -> dict:
    try:
        await setup.restart(tenant_id)
        status = await setup.status(tenant_id)
    except DomainPilotError as exc:
        raise domain_error_to_http(exc) from exc
    return success_response(request=request, data=DomainStatusResponse(**status).model_dump())


@router.post(
    "/tenants/{tenant_id}/domain/check",
    response_model=SuccessEnvelope[DomainStatusResponse],
)
async def check_domain_now(
    tenant_id: str,
    request: Request,
    setup: DomainSetupService = Depends(get_setup_service),
) -> dict:
    try:
        status = await setup.check(tenant_id)
    except DomainPilotError as exc:
        raise domain_error_to_http(exc) from exc
    return success_response(request=request, data=DomainStatusResponse(**status).model_dump())


@router.get(
    "/tenants/{tenant_id}/domain/propagation",
    response_model=SuccessEnvelope[DomainPropagationResponse],
)
async def get_domain_propagation(
    tenant_id: str,
    request: Request,
    setup: DomainSetupService = Depends(get_setup_service),
) -> dict:
    try:
        report = await setup.propagation(tenant_id)
    except DomainPilotError as exc:
        raise domain_error_to_http(exc) from exc
    return success_response(request=request, data=DomainPropagationResponse(**report).model_dump())


@router.delete(
    "/tenants/{tenant_id}/domain",
    response_model=SuccessEnvelope[DomainRemovedResponse],
)
async def remove_domain(
    tenant_id: str,
    request: Request,
    setup: DomainSetupService = Depends(get_setup_service),
) -> dict:
    try:
        status = await setup.remove(tenant_id)
    except DomainPilotError as exc:
        raise domain_error_to_http(exc) from exc
    data = DomainRemovedResponse(tenant_id=tenant_id, status=status.value)
    return success_response(request=request, data=data.model_dump())


@router.post(
    "/admin/tenants/{tenant_id}/domain/activate",
    response_model=SuccessEnvelope[DomainActivateResponse],
    tags=["admin"],
)
async def force_activate_domain(
    tenant_id: str,
    request: Request,
    setup: DomainSetupService = Depends(get_setup_service),
) -> dict:
    # Operator override; a domain that is already active reports activated=false.
    try:
        result = await setup.force_activate(tenant_id)
    except DomainPilotError as exc:
        raise domain_error_to_http(exc) from exc
    data = DomainActivateResponse(
        tenant_id=tenant_id,
        activated=result.activated,
        status=result.status.value if result.status is not None else None,
        reason=result.reason,
    )
    return success_response(request=request, data=data.model_dump())
