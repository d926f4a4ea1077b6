from __future__ import annotations

import logging
import traceback
from typing import Any
from uuid import uuid4

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from couriercore.apps.api.response import error_response
from couriercore.core.config import get_settings
from couriercore.core.errors import CourierError
from couriercore.persistence.guards import TenantPredicateError


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHENTICATED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    415: "UNSUPPORTED_MEDIA_TYPE",
    422: "BUSINESS_RULE_VIOLATION",
    429: "RATE_LIMIT_EXCEEDED",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


def _is_development() -> bool:
    return get_settings().environment.lower() in {"development", "dev", "local"}


async def courier_error_handler(request: Request, exc: CourierError) -> JSONResponse:
    # Domain errors propagate unchanged to the boundary and map 1:1 onto status codes.
    payload = error_response(
        request=request,
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Covers both FastAPI and Starlette HTTPException (404 for unknown routes, 405, ...).
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Malformed payloads are client errors: 400 with field-level details.
    payload = error_response(
        request=request,
        code="VALIDATION_ERROR",
        message="Validation error",
        details={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(content=payload, status_code=400)


def _internal_error(request: Request, exc: Exception, *, log_message: str) -> JSONResponse:
    error_id = uuid4().hex
    logger.error(
        "%s error_id=%s path=%s method=%s",
        log_message,
        error_id,
        request.url.path,
        request.method,
        exc_info=exc,
    )
    details = None
    if _is_development():
        details = {
            "exception_type": type(exc).__name__,
            "exception": str(exc),
            "traceback": traceback.format_exception(type(exc), exc, exc.__traceback__),
        }
    payload = error_response(
        request=request,
        code="INTERNAL_ERROR",
        message="Internal server error",
        details=details,
        error_id=error_id,
    )
    return JSONResponse(content=payload, status_code=500)


async def tenant_predicate_exception_handler(
    request: Request, exc: TenantPredicateError
) -> JSONResponse:
    return _internal_error(request, exc, log_message="tenant_predicate_missing")


async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    return _internal_error(request, exc, log_message="database_error")


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Never leak stack traces outside development; the error_id ties the response to the log.
    return _internal_error(request, exc, log_message="unhandled_error")

