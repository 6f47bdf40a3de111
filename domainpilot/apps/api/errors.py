from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from domainpilot.apps.api.response import error_response, is_versioned_request
from domainpilot.core.errors import (
    ConfigurationError,
    DomainPilotError,
    InvalidTransitionError,
    TenantNotFoundError,
)


_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # HTTPException detail is either {"code", "message", ...extras} or a plain string.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


def domain_error_to_http(exc: DomainPilotError) -> HTTPException:
    """Map engine errors onto stable API error codes."""
    if isinstance(exc, TenantNotFoundError):
        return HTTPException(status_code=404, detail={"code": "TENANT_NOT_FOUND", "message": str(exc)})
    if isinstance(exc, ConfigurationError):
        return HTTPException(status_code=422, detail={"code": "DOMAIN_CONFIG_INVALID", "message": str(exc)})
    if isinstance(exc, InvalidTransitionError):
        return HTTPException(
            status_code=409,
            detail={
                "code": "DOMAIN_TRANSITION_INVALID",
                "message": str(exc),
                "current_status": exc.current,
                "target_status": exc.target,
            },
        )
    return HTTPException(
        status_code=503,
        detail={"code": "DOMAIN_SERVICE_UNAVAILABLE", "message": "Domain service temporarily unavailable"},
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers)
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def domain_exception_handler(request: Request, exc: DomainPilotError) -> JSONResponse:
    # Engine errors that escaped a route still get a stable code.
    return await http_exception_handler(request, domain_error_to_http(exc))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": exc.errors()}, status_code=422)
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": exc.errors()},
    )
    return JSONResponse(content=payload, status_code=422)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": "Internal Server Error"}, status_code=500)
    payload = error_response(request=request, code="INTERNAL_ERROR", message="Internal server error")
    return JSONResponse(content=payload, status_code=500)

