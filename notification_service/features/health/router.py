"""Liveness and readiness endpoints.

- GET /health - process is up
- GET /health/ready - database reachable; Redis reachable when configured
"""

from __future__ import annotations

import logging
from typing import Literal

from fastapi import APIRouter, Response, status
from pydantic import BaseModel
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from notification_service.core.settings import get_app_settings
from notification_service.infra.database.session import engine
from notification_service.infra.redis import get_redis_instance

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])

CheckState = Literal["ok", "error", "disabled"]


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded"]
    service: str
    version: str
    checks: dict[str, CheckState] = {}


@router.get("", response_model=HealthResponse, summary="Liveness")
async def health() -> HealthResponse:
    settings = get_app_settings()
    return HealthResponse(status="ok", service=settings.service_name, version=settings.version)


@router.get("/ready", response_model=HealthResponse, summary="Readiness")
async def ready(response: Response) -> HealthResponse:
    checks: dict[str, CheckState] = {}

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except SQLAlchemyError as e:
        logger.warning("Database readiness check failed", extra={"error": str(e)})
        checks["database"] = "error"

    redis = get_redis_instance()
    if redis is None:
        checks["redis"] = "disabled"
    else:
        try:
            await redis.client.ping()
            checks["redis"] = "ok"
        except RedisError as e:
            logger.warning("Redis readiness check failed", extra={"error": str(e)})
            checks["redis"] = "error"

    healthy = "error" not in checks.values()
    if not healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    settings = get_app_settings()
    return HealthResponse(
        status="ok" if healthy else "degraded",
        service=settings.service_name,
        version=settings.version,
        checks=checks,
    )
