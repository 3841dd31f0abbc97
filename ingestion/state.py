"""
Run state and result summary types.
"""

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.config import ImportConfig
from core.exceptions import IngestionError
from ingestion.executor import BatchOutcome, RecordFailure
from models.base import RunStatus

MAX_RETAINED_ERRORS = 50
MAX_REPORTED_ERRORS = 10


def new_run_id() -> str:
    return f"imp_{int(time.time())}_{uuid.uuid4().hex[:8]}"


@dataclass
class RunContext:
    """
    Mutable state of one import run, owned by the runner.

    ``position`` counts data rows consumed (created, skipped or failed),
    including rows covered by a checkpoint the run resumed from.
    """
    source: str
    config: ImportConfig
    run_id: str = field(default_factory=new_run_id)
    status: RunStatus = RunStatus.STARTING
    started_at: datetime = field(default_factory=datetime.utcnow)
    started_clock: float = field(default_factory=time.monotonic)

    descriptor: Optional[str] = None
    checkpoint_key: Optional[str] = None
    keep_checkpoint: bool = False

    total: int = 0
    position: int = 0
    created: int = 0
    skipped: int = 0
    errors: int = 0
    resumed_from: int = 0
    last_checkpoint_at: int = 0
    failures: List[RecordFailure] = field(default_factory=list)

    def fold(self, outcome: BatchOutcome):
        """Add a batch outcome to the running totals"""
        self.created += outcome.processed
        self.skipped += outcome.skipped
        self.errors += len(outcome.errors)
        self.position += outcome.attempted

        room = MAX_RETAINED_ERRORS - len(self.failures)
        if room > 0:
            self.failures.extend(outcome.errors[:room])

    def elapsed(self) -> float:
        return time.monotonic() - self.started_clock


@dataclass
class ImportResult:
    """Summary returned to the caller for every run, successful or not"""
    run_id: str
    status: RunStatus
    message: str
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    total: int = 0
    error_messages: List[str] = field(default_factory=list)
    error_details: List[Dict[str, Any]] = field(default_factory=list)
    error_type: Optional[str] = None
    duration: float = 0.0
    peak_memory: int = 0
    resumed_from: int = 0
    memory_info: Optional[Dict[str, Any]] = None
    suggestions: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status in (RunStatus.COMPLETED, RunStatus.COMPLETED_WITH_ERRORS)

    @property
    def created(self) -> int:
        """Records created; ``processed`` counts the same thing"""
        return self.processed

    @property
    def records_per_second(self) -> float:
        return round(self.processed / self.duration, 2) if self.duration > 0 else 0.0

    @classmethod
    def from_run(
        cls,
        run: RunContext,
        status: RunStatus,
        message: str,
        error: Optional[IngestionError] = None,
        peak_memory: int = 0
    ) -> "ImportResult":
        return cls(
            run_id=run.run_id,
            status=status,
            message=message,
            processed=run.created,
            skipped=run.skipped,
            errors=run.errors,
            total=max(run.total, run.position),
            error_messages=[str(f) for f in run.failures[:MAX_REPORTED_ERRORS]],
            error_details=[f.to_dict() for f in run.failures[:MAX_REPORTED_ERRORS]],
            error_type=type(error).__name__ if error else None,
            duration=round(run.elapsed(), 2),
            peak_memory=peak_memory,
            resumed_from=run.resumed_from,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "success": self.success,
            "message": self.message,
            "processed": self.processed,
            "created": self.created,
            "skipped": self.skipped,
            "errors": self.errors,
            "total": self.total,
            "error_messages": self.error_messages,
            "error_type": self.error_type,
            "resumed_from": self.resumed_from,
            "performance": {
                "total_time": self.duration,
                "records_per_second": self.records_per_second,
                "peak_memory": self.peak_memory,
            },
            "memory_info": self.memory_info,
            "suggestions": self.suggestions,
        }
