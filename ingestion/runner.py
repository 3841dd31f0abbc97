"""
Import Runner - Orchestrates a resumable, memory-aware CSV import.

This module provides the import state machine with:
- Exclusive run lock (a second concurrent run fails fast)
- Streaming decode with header validation before any record is stored
- Adaptive batch sizing driven by timing and memory pressure
- Periodic checkpoints for resume-on-failure
- Error ceiling, time budget and cooperative cancellation
- Accurate run metrics in the returned ImportResult

States: starting -> processing -> completed | completed_with_errors | failed
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import ImportConfig, get_config
from core.logging import log_event
from core.exceptions import (
    AlreadyRunning,
    ImportCancelled,
    IngestionError,
    MemoryExhausted,
    MissingColumns,
    TimeBudgetExceeded,
    TooManyErrors,
)
from ingestion.adaptive import AdaptiveScheduler
from ingestion.checkpoint import CheckpointStore, SQLKeyValueStore, checkpoint_key, server_info
from ingestion.decoder import StreamingDecoder
from ingestion.executor import BatchExecutor, BatchOutcome
from ingestion.locks import DEFAULT_LOCK_KEY, LockStore, SQLLockStore
from ingestion.materializer import RecordMaterializer, SQLRecordMaterializer
from ingestion.monitor import ResourceMonitor, emergency_cleanup, suggest_remediations
from ingestion.progress import ProgressSink, SQLProgressSink
from ingestion.recorder import RunRecorder
from ingestion.source import RecordSource, resolve_source
from ingestion.state import ImportResult, RunContext
from models.base import RunStatus

logger = logging.getLogger(__name__)

# Share of the host time limit after which the run stops and keeps its checkpoint
TIME_BUDGET_FRACTION = 0.9


class IngestionRunner:
    """
    Production-grade import orchestrator

    Responsibilities:
    - Hold the run lock for the whole run and always release it
    - Validate the header before the first record is materialized
    - Resume from a checkpoint written by an interrupted run
    - Fold batch outcomes into running totals and report progress
    - Classify the terminal state and record run metrics

    Collaborators are injected so the runner can be driven entirely by
    in-memory fakes; ``run_import`` wires the SQL implementations.
    """

    def __init__(
        self,
        materializer: RecordMaterializer,
        checkpoints: CheckpointStore,
        locks: LockStore,
        progress: ProgressSink,
        config_provider: Callable[[], ImportConfig] = get_config,
        monitor: Optional[ResourceMonitor] = None,
        cleanup_hook: Callable[[], Any] = emergency_cleanup,
        recorder: Optional[RunRecorder] = None,
        lock_key: str = DEFAULT_LOCK_KEY,
        should_stop: Optional[Callable[[], bool]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.materializer = materializer
        self.checkpoints = checkpoints
        self.locks = locks
        self.progress = progress
        self.config_provider = config_provider
        self.monitor = monitor
        self.cleanup_hook = cleanup_hook
        self.recorder = recorder
        self.lock_key = lock_key
        self.should_stop = should_stop
        self.transport = transport
        self._stop_requested = False

    def request_stop(self):
        """Ask the running import to stop at the next batch boundary"""
        self._stop_requested = True

    def _stop_signalled(self) -> bool:
        if self._stop_requested:
            return True
        return bool(self.should_stop and self.should_stop())

    async def _cleanup(self):
        result = self.cleanup_hook()
        if inspect.isawaitable(result):
            await result

    async def run(self, source: str, resume: bool = True) -> ImportResult:
        """
        Run one import of ``source``.

        Args:
            source: "local", "remote", "dropbox", a file path or an http(s) URL
            resume: Continue from a checkpoint left by an interrupted run

        Returns:
            ImportResult; failures are reported in the result, not raised
        """
        config = self.config_provider()
        run = RunContext(source=source, config=config)
        monitor = self.monitor or ResourceMonitor(limit=config.memory_limit)
        monitor.reset()
        self._stop_requested = False

        # --------------------------------------------------
        # LOCK (fail fast, touch nothing owned by the holder)
        # --------------------------------------------------
        if not await self.locks.acquire(self.lock_key, owner=run.run_id):
            error = AlreadyRunning(
                "Another import is already running",
                context={"lock_key": self.lock_key, "run_id": run.run_id}
            )
            logger.warning(error.message, extra={"context": error.context})
            run.status = RunStatus.FAILED
            return ImportResult.from_run(run, RunStatus.FAILED, error.message, error=error)

        logger.info(
            f"Starting import {run.run_id}",
            extra={"context": {"source": source, "resume": resume}}
        )

        try:
            try:
                result = await self._execute(run, monitor, resume)

            except IngestionError as e:
                result = await self._fail(run, monitor, e)

            except Exception as e:
                logger.exception("Unexpected error in import pipeline")
                error = IngestionError(
                    "Unexpected error in import pipeline",
                    context={"run_id": run.run_id, "processed": run.created, "errors": run.errors},
                    original_exception=e
                )
                result = await self._fail(run, monitor, error)

        finally:
            await self.locks.release(self.lock_key)

        if self.recorder:
            await self.recorder.finish(run, result)
        return result

    async def _execute(self, run: RunContext, monitor: ResourceMonitor, resume: bool) -> ImportResult:
        config = run.config

        # --------------------------------------------------
        # PHASE 1: RESOLVE SOURCE
        # --------------------------------------------------
        run.descriptor = resolve_source(run.source, config)
        run.checkpoint_key = checkpoint_key(run.descriptor, config)
        record_source = RecordSource(run.descriptor, transport=self.transport)

        run.total = await record_source.estimate_total_rows()
        await self.progress.update(0, run.total, run.status.value)
        if self.recorder:
            await self.recorder.start(run)

        size_hint = await record_source.size_hint()

        async with StreamingDecoder(record_source, size_hint=size_hint) as decoder:
            # --------------------------------------------------
            # PHASE 2: HEADER VALIDATION
            # --------------------------------------------------
            header = await decoder.read_header()
            missing = [column for column in config.required_columns if column not in header]
            if missing:
                raise MissingColumns(missing, context={"source": run.descriptor, "header": header})

            # --------------------------------------------------
            # PHASE 3: RESUME
            # --------------------------------------------------
            if resume:
                checkpoint = await self.checkpoints.load(run.checkpoint_key)
                if checkpoint is not None:
                    run.position = await self.checkpoints.resume_position(decoder, checkpoint)
                    run.resumed_from = run.position
                    run.last_checkpoint_at = run.position
                    run.created = checkpoint.created
                    run.skipped = checkpoint.skipped
                    run.errors = checkpoint.errors
                    run.total = max(run.total, checkpoint.total)

            # --------------------------------------------------
            # PHASE 4: BATCH LOOP
            # --------------------------------------------------
            scheduler = AdaptiveScheduler(
                monitor=monitor,
                min_size=config.min_batch_size,
                max_size=config.max_batch_size,
                initial=config.initial_batch_size,
                available_memory=monitor.sample().available,
            )
            executor = BatchExecutor(self.materializer, scheduler, monitor)

            run.status = RunStatus.PROCESSING
            await self._loop(run, decoder, executor, monitor)

        # --------------------------------------------------
        # PHASE 5: FINALIZE
        # --------------------------------------------------
        return await self._complete(run, monitor)

    async def _loop(
        self,
        run: RunContext,
        decoder: StreamingDecoder,
        executor: BatchExecutor,
        monitor: ResourceMonitor
    ):
        config = run.config

        while True:
            if self._stop_signalled():
                raise ImportCancelled(
                    "Import cancelled",
                    context={"run_id": run.run_id, "position": run.position}
                )

            await self._check_time_budget(run, monitor)

            if monitor.sample().critical:
                await self._cleanup()
                sample = monitor.sample()
                if sample.critical:
                    raise MemoryExhausted(
                        "Memory limit reached and cleanup did not recover enough memory",
                        context={"run_id": run.run_id, "memory": sample.to_dict()}
                    )

            # Never pull past the next checkpoint boundary
            until_checkpoint = config.checkpoint_interval - (run.position - run.last_checkpoint_at)
            outcome = await executor.process_batch(decoder, config, run.run_id, limit=until_checkpoint)
            run.fold(outcome)

            await self.progress.update(run.position, max(run.total, run.position), run.status.value)

            if run.position - run.last_checkpoint_at >= config.checkpoint_interval:
                await self._save_checkpoint(run, monitor, outcome)

            if outcome.finished:
                if run.position > run.last_checkpoint_at:
                    await self._save_checkpoint(run, monitor, outcome)
                break

            if run.errors > config.error_ceiling:
                raise TooManyErrors(
                    f"Too many errors ({run.errors}), import stopped",
                    context={"run_id": run.run_id, "errors": run.errors, "ceiling": config.error_ceiling}
                )

            if config.inter_batch_delay > 0:
                await asyncio.sleep(config.inter_batch_delay)

    async def _check_time_budget(self, run: RunContext, monitor: ResourceMonitor):
        limit = run.config.time_limit
        if limit <= 0:
            return

        elapsed = run.elapsed()
        if elapsed < limit * TIME_BUDGET_FRACTION:
            return

        await self._save_checkpoint(run, monitor)
        run.keep_checkpoint = True
        raise TimeBudgetExceeded(
            "Approaching the execution time limit, stopped with a checkpoint for resume",
            context={"run_id": run.run_id, "elapsed": round(elapsed, 2), "time_limit": limit, "position": run.position}
        )

    async def _save_checkpoint(
        self,
        run: RunContext,
        monitor: ResourceMonitor,
        outcome: Optional[BatchOutcome] = None
    ):
        memory = monitor.last_sample.to_dict() if monitor.last_sample else None
        await self.checkpoints.save(
            run.checkpoint_key,
            run.run_id,
            processed=run.position,
            total=run.total,
            created=run.created,
            skipped=run.skipped,
            errors=run.errors,
            last_data=outcome.last_record if outcome else None,
            info=server_info(memory, run.config.time_limit),
        )
        run.last_checkpoint_at = run.position

    async def _complete(self, run: RunContext, monitor: ResourceMonitor) -> ImportResult:
        if run.errors == 0:
            status = RunStatus.COMPLETED
        elif run.created > 0:
            status = RunStatus.COMPLETED_WITH_ERRORS
        else:
            status = RunStatus.FAILED
        run.status = status

        message = (
            f"Import finished: {run.created} created, {run.skipped} duplicates skipped, "
            f"{run.errors} errors"
        )
        result = ImportResult.from_run(run, status, message, peak_memory=monitor.peak)
        if status == RunStatus.FAILED:
            result.suggestions = ["Check the error details; every attempted record failed"]

        await self.checkpoints.clear(run.checkpoint_key)
        await self.progress.update(run.position, max(run.total, run.position), status.value)

        log_event(
            logger,
            "info" if status == RunStatus.COMPLETED else "warning",
            f"Import {run.run_id} {status.value}",
            created=run.created,
            skipped=run.skipped,
            errors=run.errors,
            duration=result.duration,
            records_per_second=result.records_per_second,
        )
        return result

    async def _fail(self, run: RunContext, monitor: ResourceMonitor, error: IngestionError) -> ImportResult:
        """
        Terminal failure path.

        Clears transient progress and, unless the run stopped for its time
        budget, the checkpoint. A storage error during this cleanup is
        logged; the failure result is still returned.
        """
        run.status = RunStatus.FAILED
        logger.error(
            f"Import failed: {error.message}",
            extra={"context": error.to_dict()}
        )

        result = ImportResult.from_run(run, RunStatus.FAILED, error.message, error=error, peak_memory=monitor.peak)

        if isinstance(error, MemoryExhausted):
            sample = monitor.last_sample
            result.memory_info = sample.to_dict() if sample else None
            result.suggestions = suggest_remediations(sample.level if sample else "critical")
        elif isinstance(error, TimeBudgetExceeded):
            result.suggestions = ["Run the import again to resume from the saved checkpoint"]

        try:
            await self.progress.clear()
            if run.checkpoint_key and not run.keep_checkpoint:
                await self.checkpoints.clear(run.checkpoint_key)
        except Exception:
            logger.exception(f"Cleanup after failed import {run.run_id} did not complete")

        return result


async def run_import(
    source: str,
    session_factory: Optional[async_sessionmaker] = None,
    config: Optional[ImportConfig] = None,
    resume: bool = True,
    **runner_kwargs
) -> ImportResult:
    """
    Run an import with the SQL-backed collaborators.

    Args:
        source: Source selector or location (see IngestionRunner.run)
        session_factory: Session factory; the application factory by default
        config: Fixed configuration; read from settings when omitted
        resume: Continue from an existing checkpoint
        **runner_kwargs: Extra IngestionRunner arguments (monitor, transport, ...)
    """
    if session_factory is None:
        from core.database import async_session_maker
        session_factory = async_session_maker

    config_provider = (lambda: config) if config is not None else get_config

    async with session_factory() as session:
        runner = IngestionRunner(
            materializer=SQLRecordMaterializer(session),
            checkpoints=CheckpointStore(SQLKeyValueStore(session_factory)),
            locks=SQLLockStore(session_factory),
            progress=SQLProgressSink(session_factory),
            config_provider=config_provider,
            recorder=RunRecorder(session_factory),
            **runner_kwargs
        )
        return await runner.run(source, resume=resume)
