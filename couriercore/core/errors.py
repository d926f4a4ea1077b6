from __future__ import annotations

from typing import Any


class CourierError(Exception):
    """Base error for couriercore; carries the HTTP mapping used at the API boundary."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details
        self.headers = headers


class ValidationError(CourierError):
    """Request payload failed validation."""

    status_code = 400
    code = "VALIDATION_ERROR"


class InvalidInput(ValidationError):
    """Domain input is out of range (e.g. non-positive weight)."""

    code = "INVALID_INPUT"


class InvalidTransition(CourierError):
    """Requested shipment status is not reachable from the current status."""

    status_code = 400
    code = "INVALID_TRANSITION"


class Unauthenticated(CourierError):
    """No principal was presented for a protected path."""

    status_code = 401
    code = "UNAUTHENTICATED"


class Forbidden(CourierError):
    status_code = 403
    code = "FORBIDDEN"


class TenantNotFound(Forbidden):
    """Principal does not map to an active tenant."""

    code = "TENANT_NOT_FOUND"


class NotFound(CourierError):
    status_code = 404
    code = "NOT_FOUND"


class Conflict(CourierError):
    """Concurrent modification or uniqueness violation; retry with fresh state."""

    status_code = 409
    code = "CONFLICT"


class BusinessRuleViolation(CourierError):
    status_code = 422
    code = "BUSINESS_RULE_VIOLATION"


class RateNotConfigured(BusinessRuleViolation):
    """No rate row covers the requested service type and weight."""

    code = "RATE_NOT_CONFIGURED"


class RateLimitExceeded(CourierError):
    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"


class RateLimitUnavailable(CourierError):
    """Counter store is down and the limiter is configured to fail closed."""

    status_code = 503
    code = "RATE_LIMIT_UNAVAILABLE"
