from __future__ import annotations

from typing import Any

from domainpilot.apps.api.response import ErrorEnvelope


def _error_response(description: str, *, code: str, message: str) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {
            "application/json": {
                "example": {
                    "error": {"code": code, "message": message},
                    "meta": {"request_id": "req_example", "api_version": "v1"},
                }
            }
        },
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    404: _error_response("Tenant not found", code="TENANT_NOT_FOUND", message="tenant t_123 not found"),
    409: _error_response(
        "Status transition not allowed",
        code="DOMAIN_TRANSITION_INVALID",
        message="cannot transition domain status from monitoring to monitoring",
    ),
    422: _error_response(
        "Invalid domain configuration",
        code="DOMAIN_CONFIG_INVALID",
        message="Invalid domain format: 'not a domain'",
    ),
    500: _error_response("Internal error", code="INTERNAL_ERROR", message="Internal server error"),
}
