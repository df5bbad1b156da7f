"""Health check endpoints."""

import asyncio
import logging
from datetime import UTC, datetime

from fastapi import APIRouter, HTTPException
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from api.dependencies import ServicesDep
from infrastructure.config import get_settings

logger = logging.getLogger(__name__)

router = APIRouter()
settings = get_settings()


async def _database_status(services) -> str:
    try:
        async with services.session_factory() as session:
            result = await asyncio.wait_for(session.execute(text("SELECT 1")), timeout=5.0)
            result.scalar()
        return "connected"
    except TimeoutError:
        logger.error("Health check DB timeout")
        return "error: database timeout"
    except (SQLAlchemyError, OSError) as e:
        logger.error("Health check DB error: %s", str(e))
        return "error: database check failed"


@router.get("/health")
async def health_check():
    """Basic health check."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.get("/health/db")
async def health_check_db(services: ServicesDep):
    """Health check with database connectivity."""
    db_status = await _database_status(services)
    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "app": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "database": db_status,
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.get("/health/ready")
async def readiness_check(services: ServicesDep):
    """Readiness probe: the usage store must answer and webhooks must be verifiable."""
    db_status = await _database_status(services)
    if db_status != "connected":
        raise HTTPException(status_code=503, detail="Database not ready")
    return {
        "status": "ready",
        "database": db_status,
        "webhooks": "configured" if services.webhooks is not None else "disabled",
    }
