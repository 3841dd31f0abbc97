import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import settings
from core.database import async_session_maker
from ingestion.runner import run_import
from ingestion.state import ImportResult

logger = logging.getLogger(__name__)


class ImportScheduler:
    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        interval_minutes: Optional[int] = None
    ):
        self.scheduler = AsyncIOScheduler()
        self.session_factory = session_factory or async_session_maker
        self.interval_minutes = settings.IMPORT_SCHEDULE_MINUTES if interval_minutes is None else interval_minutes

    @property
    def enabled(self) -> bool:
        return self.interval_minutes > 0

    async def run_import_job(self) -> Optional[ImportResult]:
        """Job to run the configured import"""
        logger.info("Scheduler: Starting import job")
        result = await run_import(settings.IMPORT_SOURCE, session_factory=self.session_factory)

        if result.error_type == "AlreadyRunning":
            logger.info("Scheduler: Previous import still running, skipping this tick")
        elif not result.success:
            logger.error(f"Scheduler: Import job failed - {result.message}")
        else:
            logger.info(f"Scheduler: {result.message}")
        return result

    def start(self):
        """Start the scheduler when an interval is configured"""
        if not self.enabled:
            logger.info("Import schedule disabled")
            return

        self.scheduler.add_job(
            self.run_import_job,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id="import_job",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        self.scheduler.start()
        logger.info(f"Import scheduler started (every {self.interval_minutes} minutes)")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown()
            logger.info("Import scheduler stopped")
