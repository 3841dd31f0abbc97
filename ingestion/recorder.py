"""
Audit trail of import runs in the ``import_runs`` table
"""

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ingestion.state import ImportResult, RunContext
from models.import_run import ImportRun

logger = logging.getLogger(__name__)


class RunRecorder:
    """Create an ImportRun row when a run starts and complete it at the end"""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def start(self, run: RunContext):
        async with self.session_factory() as session:
            session.add(ImportRun(
                run_id=run.run_id,
                source=run.descriptor or run.source,
                status=run.status,
                started_at=run.started_at,
                records_total=run.total,
                config_snapshot=run.config.model_dump(),
            ))
            await session.commit()

    async def finish(self, run: RunContext, result: ImportResult):
        """
        Complete the run row with final statistics.

        The result has already been decided at this point, so a storage
        failure is logged rather than turned into a failed run.
        """
        try:
            async with self.session_factory() as session:
                row = (await session.execute(
                    select(ImportRun).where(ImportRun.run_id == run.run_id)
                )).scalar_one_or_none()

                if row is None:
                    row = ImportRun(
                        run_id=run.run_id,
                        source=run.descriptor or run.source,
                        started_at=run.started_at,
                        config_snapshot=run.config.model_dump(),
                    )
                    session.add(row)

                row.status = result.status
                row.completed_at = datetime.utcnow()
                row.duration_seconds = result.duration
                row.records_total = result.total
                row.records_created = result.processed
                row.records_skipped = result.skipped
                row.records_failed = result.errors
                row.resumed_from = result.resumed_from
                row.error_message = None if result.status.value == "completed" else result.message
                row.error_details = result.error_details or None
                row.peak_memory = result.peak_memory
                row.records_per_second = result.records_per_second
                await session.commit()
        except SQLAlchemyError:
            logger.exception(f"Failed to record completion of import run {run.run_id}")
