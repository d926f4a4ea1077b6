from __future__ import annotations

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel

from couriercore.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from couriercore.apps.api.response import SuccessEnvelope, success_response
from couriercore.core.config import get_settings
from couriercore.persistence.db import ping_database

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)


class HealthResponse(BaseModel):
    # "degraded" means the process is up but shipments cannot be read or written.
    status: str
    database: str
    rate_limit_backend: str


# /health returns the bare payload; /v1/health is enveloped.
@router.get("/health", response_model=SuccessEnvelope[HealthResponse] | HealthResponse)
async def health(request: Request, response: Response) -> dict:
    settings = get_settings()
    database_ok = await ping_database()
    if not database_ok:
        response.status_code = 503
    payload = HealthResponse(
        status="ok" if database_ok else "degraded",
        database="ok" if database_ok else "unavailable",
        rate_limit_backend=settings.rl_backend if settings.rate_limit_enabled else "disabled",
    )
    return success_response(request=request, data=payload)
