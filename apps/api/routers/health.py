"""
Health check endpoints.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from config import missing_required_settings
import database

router = APIRouter()


async def _database_status() -> str:
    try:
        async with database.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return "up"
    except Exception as e:
        return f"down: {str(e)}"


@router.get("/health")
async def health_check():
    """
    Health check endpoint.
    Returns overall system health status.
    """
    missing = missing_required_settings()
    health_status = {
        "status": "healthy",
        "api": "up",
        "database": await _database_status(),
        "identity_secret": "missing" if "JWT_SECRET_CLOUD" in missing else "configured",
        "provisioning_key": "missing" if "PROVISIONING_API_KEY" in missing else "configured",
    }
    if health_status["database"] != "up":
        health_status["status"] = "degraded"

    return health_status


@router.get("/health/ready")
async def readiness_check():
    """Kubernetes-style readiness check: settings present and database reachable."""
    missing = missing_required_settings()
    db_status = await _database_status()
    if missing or db_status != "up":
        return JSONResponse(
            status_code=503,
            content={"ready": False, "missing": missing, "database": db_status},
        )
    return {"ready": True, "database": db_status}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness check."""
    return {"alive": True}
