"""
Import control endpoints: start a run, follow its progress, list past runs
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.dependencies import get_db, get_import_config, get_session_factory
from core.config import ImportConfig
from ingestion.locks import DEFAULT_LOCK_KEY, SQLLockStore
from ingestion.monitor import ResourceMonitor, suggest_remediations
from ingestion.progress import SQLProgressSink
from ingestion.runner import run_import
from models.base import RunStatus
from models.import_run import ImportRun
from schemas.api import (
    ImportAccepted,
    ImportRequest,
    ImportRunList,
    ImportRunResponse,
    MemoryResponse,
    ProgressResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/imports", tags=["Imports"])


@router.post("", response_model=ImportAccepted, status_code=status.HTTP_202_ACCEPTED)
async def start_import(
    background_tasks: BackgroundTasks,
    body: Optional[ImportRequest] = None,
    factory: async_sessionmaker = Depends(get_session_factory),
    config: ImportConfig = Depends(get_import_config)
):
    """
    Start an import in the background.

    Returns 409 when another import holds the run lock. The lock is checked
    again by the run itself, so a race between two requests still ends with
    one of them failing as AlreadyRunning.
    """
    body = body or ImportRequest()
    source = body.source or config.source

    if await SQLLockStore(factory).is_held(DEFAULT_LOCK_KEY):
        logger.warning("POST /imports rejected, import already running")
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="An import is already running")

    logger.info(f"POST /imports - source={source}, resume={body.resume}")
    background_tasks.add_task(
        run_import,
        source,
        session_factory=factory,
        config=config,
        resume=body.resume
    )
    return ImportAccepted(source=source, resume=body.resume)


@router.get("/progress", response_model=ProgressResponse)
async def get_progress(factory: async_sessionmaker = Depends(get_session_factory)):
    """Progress of the current import, or of the last completed one"""
    state = await SQLProgressSink(factory).get()
    if state is None:
        return ProgressResponse(active=False)

    return ProgressResponse(
        active=state.phase in {s.value for s in RunStatus if not s.is_terminal},
        phase=state.phase,
        processed=state.processed,
        total=state.total,
        percent=state.percent,
        updated_at=state.updated_at,
    )


@router.get("/runs", response_model=ImportRunList)
async def list_runs(
    limit: int = Query(10, ge=1, le=100, description="Number of recent runs to return"),
    db: AsyncSession = Depends(get_db)
):
    """Most recent import runs, newest first"""
    total = (await db.execute(select(func.count()).select_from(ImportRun))).scalar()
    result = await db.execute(
        select(ImportRun).order_by(ImportRun.started_at.desc(), ImportRun.id.desc()).limit(limit)
    )
    runs = [ImportRunResponse.model_validate(run) for run in result.scalars().all()]
    return ImportRunList(runs=runs, total=total or 0)


@router.get("/memory", response_model=MemoryResponse)
async def get_memory(config: ImportConfig = Depends(get_import_config)):
    """Current memory usage against the configured limit, with advice"""
    sample = ResourceMonitor(limit=config.memory_limit).sample()
    return MemoryResponse(
        current=sample.current,
        peak=sample.peak,
        limit=sample.limit,
        available=sample.available,
        percent=sample.percent,
        level=sample.level,
        suggestions=suggest_remediations(sample.level),
    )
