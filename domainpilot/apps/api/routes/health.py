from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from domainpilot.apps.api.deps import get_domain_services
from domainpilot.apps.api.response import success_response
from domainpilot.services.wiring import DomainServices

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    active_sessions: int


@router.get("/health", response_model=HealthResponse)
async def health(request: Request, services: DomainServices = Depends(get_domain_services)) -> dict:
    payload = HealthResponse(status="ok", active_sessions=len(services.monitor.active_tenant_ids()))
    return success_response(request=request, data=payload.model_dump())
