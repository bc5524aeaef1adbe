import logging
import sqlite3

from fastapi import APIRouter, Request

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """
    Health check endpoint for monitoring API status and component readiness.

    Returns status of API, queue, and database components along with deployment mode.
    """
    settings = request.app.state.settings
    manager = request.app.state.file_manager

    health_status = {
        "status": "ok",
        "deployment_mode": settings.deployment_mode,
        "bucket": manager.bucket,
        "components": {
            "api": "ready",
            "queue": "ready",
            "database": "ready",
        },
        "ready": False,
    }

    receiver = getattr(request.app.state, "receiver", None)
    if receiver is None:
        health_status["components"]["queue"] = "missing"
    elif not await receiver.queue.is_ready():
        health_status["components"]["queue"] = "unavailable"
        health_status["status"] = "degraded"

    try:
        manager.alloc_table.database.ambient.execute("SELECT 1 FROM files LIMIT 1")
    except sqlite3.Error as e:
        logger.error(f"Database health check failed: {str(e)}")
        health_status["components"]["database"] = f"error: {str(e)}"
        health_status["status"] = "degraded"

    health_status["ready"] = all(
        value == "ready" for value in health_status["components"].values()
    )
    return health_status
