from __future__ import annotations

from typing import Any

from couriercore.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, code: str, message: str, **details: Any) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {
            "application/json": {
                "example": _error_example(code=code, message=message, details=details or None),
            }
        },
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: _response("Bad request", "VALIDATION_ERROR", "Validation error"),
    401: _response("Unauthenticated", "UNAUTHENTICATED", "Authentication required"),
    403: _response("Forbidden", "TENANT_NOT_FOUND", "Tenant context not available"),
    404: _response("Not found", "NOT_FOUND", "Shipment not found"),
    409: _response(
        "Conflict",
        "CONFLICT",
        "Shipment status changed concurrently; reload and retry",
        read_status="Created",
        read_version=0,
    ),
    422: _response(
        "Business rule violation",
        "RATE_NOT_CONFIGURED",
        "No rate configured for Express at 42 kg",
        service_type="Express",
        chargeable_weight="42",
    ),
    429: _response(
        "Rate limited",
        "RATE_LIMIT_EXCEEDED",
        "Rate limit exceeded",
        plan="free",
        limit=60,
        retry_after_s=12,
    ),
    500: _response("Internal server error", "INTERNAL_ERROR", "Internal server error"),
    503: _response("Service unavailable", "RATE_LIMIT_UNAVAILABLE", "Rate limit backend unavailable"),
}
