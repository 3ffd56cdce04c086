"""
Health Check Endpoints

Endpoints:
- GET /api/health - Basic health check
- GET /api/health/detailed - Database and reminder scheduler status
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from microflash.config import settings
from microflash.db.base import get_db

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("")
async def health_check():
    """Basic health check."""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
    }


@router.get("/detailed")
async def detailed_health_check(request: Request, db: AsyncSession = Depends(get_db)):
    """
    Detailed health check with dependency status.

    Checks database connectivity and whether the reminder scheduler is
    running.
    """
    health = {"status": "healthy", "service": settings.APP_NAME, "dependencies": {}}

    try:
        await db.execute(text("SELECT 1"))
        health["dependencies"]["database"] = {"status": "healthy"}
    except Exception as e:
        health["dependencies"]["database"] = {"status": "unhealthy", "error": str(e)}
        health["status"] = "degraded"

    scheduler = getattr(request.app.state, "reminder_scheduler", None)
    if scheduler is not None and scheduler.running:
        health["dependencies"]["reminder_scheduler"] = {
            "status": "healthy",
            "tick_in_progress": scheduler.busy,
        }
    else:
        health["dependencies"]["reminder_scheduler"] = {"status": "stopped"}
        health["status"] = "degraded"

    return health
