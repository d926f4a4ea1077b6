from __future__ import annotations

import logging
import time
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.openapi.utils import get_openapi
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from couriercore.apps.api.errors import (
    courier_error_handler,
    database_exception_handler,
    http_exception_handler,
    tenant_predicate_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from couriercore.apps.api.response import API_VERSION
from couriercore.apps.api.routes.health import router as health_router
from couriercore.apps.api.routes.onboarding import router as onboarding_router
from couriercore.apps.api.routes.rates import router as rates_router
from couriercore.apps.api.routes.sessions import router as sessions_router
from couriercore.apps.api.routes.shipments import router as shipments_router
from couriercore.apps.api.routes.tenant import router as tenant_router
from couriercore.core.config import get_settings
from couriercore.core.errors import CourierError
from couriercore.core.logging import configure_logging
from couriercore.persistence.guards import TenantPredicateError


logger = logging.getLogger(__name__)

_PUBLIC_OPENAPI_PATHS = {
    "/v1/health",
    "/v1/onboarding/tenants",
    "/v1/shipments/tracking/{tracking_number}",
}


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title="Courier Core API", docs_url=None, redoc_url=None, openapi_url=None)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.debug(
            "request path=%s method=%s status=%s latency_ms=%.1f",
            request.url.path,
            request.method,
            response.status_code,
            latency_ms,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(CourierError)
    async def _courier_error_handler(request: Request, exc: CourierError):
        return await courier_error_handler(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(TenantPredicateError)
    async def _tenant_predicate_exception_handler(request: Request, exc: TenantPredicateError):
        return await tenant_predicate_exception_handler(request, exc)

    @app.exception_handler(SQLAlchemyError)
    async def _database_exception_handler(request: Request, exc: SQLAlchemyError):
        return await database_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(onboarding_router, prefix=f"/{API_VERSION}")
    app.include_router(tenant_router, prefix=f"/{API_VERSION}")
    app.include_router(shipments_router, prefix=f"/{API_VERSION}")
    app.include_router(rates_router, prefix=f"/{API_VERSION}")
    app.include_router(sessions_router, prefix=f"/{API_VERSION}")
    # Load balancers check the bare path.
    app.include_router(health_router, include_in_schema=False)

    @app.get("/v1/openapi.json", include_in_schema=False)
    async def openapi_json() -> JSONResponse:
        return JSONResponse(app.openapi())

    @app.get("/v1/docs", include_in_schema=False)
    async def v1_docs() -> HTMLResponse:
        return get_swagger_ui_html(openapi_url="/v1/openapi.json", title="Courier Core API v1")

    @app.get("/docs", include_in_schema=False)
    async def docs_redirect() -> RedirectResponse:
        return RedirectResponse(url="/v1/docs")

    def custom_openapi() -> dict:
        # Document both credential styles; public routes carry no security requirement.
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(
            title="Courier Core API",
            version=API_VERSION,
            routes=app.routes,
        )
        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes["BearerAuth"] = {"type": "http", "scheme": "bearer"}
        security_schemes["SubjectHeader"] = {
            "type": "apiKey",
            "in": "header",
            "name": settings.auth_subject_header,
        }
        for path, operations in schema.get("paths", {}).items():
            if path in _PUBLIC_OPENAPI_PATHS:
                continue
            for operation in operations.values():
                operation.setdefault("security", [{"BearerAuth": []}, {"SubjectHeader": []}])
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi

    return app


app = create_app()
