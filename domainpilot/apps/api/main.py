from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import time
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from domainpilot.apps.api.errors import (
    domain_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from domainpilot.apps.api.response import API_VERSION
from domainpilot.apps.api.routes.domains import router as domains_router
from domainpilot.apps.api.routes.health import router as health_router
from domainpilot.core.config import get_settings
from domainpilot.core.errors import DomainPilotError
from domainpilot.core.logging import configure_logging
from domainpilot.services.telemetry import increment_counter
from domainpilot.services.wiring import DomainServices, build_domain_services


logger = logging.getLogger(__name__)


def create_app(services: DomainServices | None = None, *, resume_sessions: bool = True) -> FastAPI:
    """Build the API; the lifespan owns the verification engine and its monitor."""
    configure_logging()
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        domain_services = services or build_domain_services()
        app.state.domain_services = domain_services
        if resume_sessions and domain_services.monitor.launches_sessions:
            # Sessions live in memory; pick up tenants left in monitoring by a previous process.
            resumed = await domain_services.monitor.resume_active_sessions()
            logger.info("api_startup resumed_sessions=%s", resumed)
        try:
            yield
        finally:
            await domain_services.aclose()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        increment_counter(f"http_status_{response.status_code}")
        logger.debug(
            "http_request method=%s path=%s status=%s latency_ms=%.1f",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(DomainPilotError)
    async def _domain_exception_handler(request: Request, exc: DomainPilotError):
        return await domain_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    app.include_router(domains_router, prefix=f"/{API_VERSION}")
    app.include_router(health_router)
    return app


app = create_app()
