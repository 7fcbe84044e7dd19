"""
Health check endpoint.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from src.db import fetchval as db_fetchval

from ..dependencies import get_container
from ..dependencies.container import ServiceContainer
from ..models.usage import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health(container: ServiceContainer = Depends(get_container)) -> HealthResponse:
    status = "ok"
    if container.storage_backend == "postgres":
        try:
            await db_fetchval("SELECT 1")
        except Exception as e:
            logger.warning(f"Database health check failed: {e}")
            status = "degraded"

    return HealthResponse(
        status=status,
        storage_backend=container.storage_backend,
        analysis_enabled=container.runner is not None,
        timestamp=datetime.now(timezone.utc),
    )
