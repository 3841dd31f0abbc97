"""
Health check endpoint with database and import lock status
"""

from datetime import datetime
import logging

from fastapi import APIRouter, Depends
from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db
from ingestion.locks import DEFAULT_LOCK_KEY
from models.import_run import ImportRun
from models.run_lock import ImportLock
from schemas.api import HealthCheckResponse

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Whether an import currently holds the run lock
    - Status of the most recent import run
    """
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Database connection failed: {str(e)}")
        return HealthCheckResponse(status="unhealthy", database_connected=False)

    import_running = False
    last_run = None

    try:
        import_running = await db.get(ImportLock, DEFAULT_LOCK_KEY) is not None
        result = await db.execute(
            select(ImportRun).order_by(ImportRun.started_at.desc()).limit(1)
        )
        last_run = result.scalar_one_or_none()
    except SQLAlchemyError as e:
        logger.error(f"Failed to fetch import state: {str(e)}")

    return HealthCheckResponse(
        status="busy" if import_running else "healthy",
        timestamp=datetime.utcnow(),
        database_connected=True,
        import_running=import_running,
        last_run_status=last_run.status if last_run else None,
        last_run_at=last_run.started_at if last_run else None,
    )
