"""
Batch execution: pull a bounded batch from the decoder and materialize it.
"""

import gc
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Tuple

from core.config import ImportConfig
from core.exceptions import DuplicateError, IngestionError
from ingestion.adaptive import AdaptiveScheduler
from ingestion.decoder import Record, StreamingDecoder
from ingestion.materializer import RecordMaterializer
from ingestion.monitor import ResourceMonitor

logger = logging.getLogger(__name__)

# A batch is abandoned once more than this share of its size has failed
BATCH_ERROR_RATIO = 0.5
SAMPLE_FIELDS = 3

STOP_MEMORY = "memory_critical"
STOP_ERRORS = "too_many_errors"


@dataclass(frozen=True)
class RecordFailure:
    """Structured detail of a record that could not be materialized"""
    line: int
    message: str
    error_type: str
    sample: Dict[str, str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "line": self.line,
            "message": self.message,
            "error_type": self.error_type,
            "data": self.sample,
        }

    def __str__(self) -> str:
        return f"Line {self.line}: {self.message}"


@dataclass
class BatchOutcome:
    """
    Result of one batch.

    ``processed`` counts created records. ``attempted`` equals
    processed + skipped + len(errors). ``deferred`` records were pulled
    but not attempted and are served first by the next batch.
    """
    pulled: int = 0
    processed: int = 0
    skipped: int = 0
    errors: List[RecordFailure] = field(default_factory=list)
    deferred: int = 0
    finished: bool = False
    stopped_reason: Optional[str] = None
    duration: float = 0.0
    memory_delta: int = 0
    last_record: Optional[Record] = None

    @property
    def attempted(self) -> int:
        return self.processed + self.skipped + len(self.errors)


def _sample(record: Record) -> Dict[str, str]:
    return {key: record[key][:100] for key in list(record)[:SAMPLE_FIELDS]}


class BatchExecutor:
    """
    Process records in batches sized by the adaptive scheduler.

    Responsibilities:
    - Pull up to ``scheduler.current_size`` records, or fewer when the caller
      passes a ``limit`` (stop early at end of stream)
    - Materialize records sequentially; prior writes are visible to later ones
    - Stop the batch early when memory turns critical after a success
    - Abandon the batch when failures exceed half of its size
    - Feed timing and memory deltas back to the scheduler

    Records pulled but not attempted because the batch stopped early are
    kept (at most one batch worth) and processed first by the next call.
    """

    def __init__(
        self,
        materializer: RecordMaterializer,
        scheduler: AdaptiveScheduler,
        monitor: ResourceMonitor
    ):
        self.materializer = materializer
        self.scheduler = scheduler
        self.monitor = monitor
        self._pending: Deque[Tuple[int, Record]] = deque()

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def _pull(self, decoder: StreamingDecoder, size: int) -> List[Tuple[int, Record]]:
        batch: List[Tuple[int, Record]] = []
        while self._pending and len(batch) < size:
            batch.append(self._pending.popleft())
        while len(batch) < size:
            record = await decoder.read_row()
            if record is None:
                break
            batch.append((decoder.line_number, record))
        return batch

    async def process_batch(
        self,
        decoder: StreamingDecoder,
        config: ImportConfig,
        run_id: str,
        limit: Optional[int] = None
    ) -> BatchOutcome:
        """
        Pull and materialize one batch.

        ``limit`` caps the pull below the scheduler's size, e.g. to stop at a
        checkpoint boundary. ``finished`` compares against the capped size.
        """
        size = self.scheduler.current_size
        if limit is not None:
            size = max(1, min(size, limit))
        start_time = time.perf_counter()
        start_memory = self.monitor.sample().current

        batch = await self._pull(decoder, size)
        if not batch:
            return BatchOutcome(finished=True)

        outcome = BatchOutcome(pulled=len(batch))
        index = 0

        for index, (line, record) in enumerate(batch):
            outcome.last_record = record
            try:
                record_id = await self.materializer.materialize(record, config, run_id)

            except DuplicateError as e:
                outcome.skipped += 1
                logger.debug(f"Line {line}: skipped duplicate ({e.message})")
                continue

            except Exception as e:
                message = e.message if isinstance(e, IngestionError) else str(e)
                failure = RecordFailure(
                    line=line,
                    message=message,
                    error_type=type(e).__name__,
                    sample=_sample(record),
                )
                outcome.errors.append(failure)
                logger.warning(
                    f"Line {line}: {message}",
                    extra={"context": {"error_type": failure.error_type, "data": failure.sample}}
                )

                if len(outcome.errors) > size * BATCH_ERROR_RATIO:
                    outcome.stopped_reason = STOP_ERRORS
                    logger.error(
                        "Too many errors in batch - abandoning the rest of the batch",
                        extra={"context": {"errors": len(outcome.errors), "batch_size": size}}
                    )
                    break
                continue

            if record_id is None:
                outcome.skipped += 1
                continue

            outcome.processed += 1
            if self.monitor.is_critical():
                outcome.stopped_reason = STOP_MEMORY
                logger.warning(
                    "Critical memory status - ending batch early",
                    extra={"context": {"processed_in_batch": outcome.processed}}
                )
                break
        else:
            index = len(batch)

        if outcome.stopped_reason:
            remainder = batch[index + 1:]
            outcome.deferred = len(remainder)
            self._pending.extendleft(reversed(remainder))

        outcome.finished = len(batch) < size and not self._pending
        outcome.duration = time.perf_counter() - start_time
        outcome.memory_delta = self.monitor.sample().current - start_memory

        self.scheduler.record_outcome(outcome.duration, outcome.memory_delta, outcome.pulled)
        self.scheduler.adjust()

        gc.collect()

        logger.debug(
            "Batch processed",
            extra={"context": {
                "pulled": outcome.pulled,
                "processed": outcome.processed,
                "skipped": outcome.skipped,
                "errors": len(outcome.errors),
                "deferred": outcome.deferred,
                "batch_time": round(outcome.duration, 2),
                "records_per_second": round(outcome.processed / outcome.duration, 2) if outcome.duration > 0 else 0,
            }}
        )
        return outcome
