"""
Health check and readiness probe endpoints.
Provides liveness, readiness and WebSocket statistics for monitoring systems.
"""
import logging
import os
from typing import Dict, Any
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import text
from sqlalchemy.orm import Session

from api.dependencies import get_chat_gateway, get_db
from realtime.gateway import ChatGateway

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

SERVICE_NAME = "Estate Chat API"
SERVICE_VERSION = "1.0.0"


def check_database(db: Session) -> Dict[str, Any]:
    """
    Check database connectivity.

    Args:
        db: Database session

    Returns:
        Status dict with healthy=True/False and details
    """
    try:
        db.execute(text("SELECT 1")).fetchone()
        return {"healthy": True, "message": "Database connection OK"}
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return {"healthy": False, "message": f"Database connection failed: {str(e)}"}


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """
    Liveness probe endpoint.

    Returns basic service status without checking dependencies.
    """
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "environment": os.getenv("ENVIRONMENT", "development")
    }


@router.get("/ready", status_code=status.HTTP_200_OK)
def readiness_check(db: Session = Depends(get_db)):
    """
    Readiness probe endpoint.

    Returns 200 when the database answers, 503 otherwise.

    Example Response:
        {
            "status": "ready",
            "checks": {"database": {"healthy": true, "message": "Database connection OK"}}
        }
    """
    checks = {"database": check_database(db)}

    if all(check["healthy"] for check in checks.values()):
        return {"status": "ready", "checks": checks}

    logger.warning("Readiness check failed: database unavailable")
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"status": "not_ready", "checks": checks}
    )


@router.get("/ws/stats", status_code=status.HTTP_200_OK)
async def websocket_stats(gateway: ChatGateway = Depends(get_chat_gateway)):
    """
    Current WebSocket connection counts.

    Example Response:
        {"active_users": 2, "authenticated_connections": 3, "total_connections": 4, "heartbeat_running": true}
    """
    return {**gateway.stats(), "heartbeat_running": gateway.running}
