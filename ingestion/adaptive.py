"""
Adaptive batch sizing.

A small multiplicative feedback controller: batches shrink when they are
slow or memory is critical and grow when they are fast. The thresholds are
tunable constants, not derived values.
"""

import logging
import math
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional

from ingestion.monitor import ResourceMonitor

logger = logging.getLogger(__name__)

SLOW_BATCH_SECONDS = 10.0
FAST_BATCH_SECONDS = 2.0
SHRINK_FACTOR = 0.8
GROW_FACTOR = 1.2
WINDOW_SIZE = 20
MIN_SAMPLES = 3

SAFETY_FRACTION = 0.8
PER_RECORD_MEMORY = 2 * 1024 * 1024  # conservative estimate per materialized record


@dataclass(frozen=True)
class BatchSample:
    duration: float
    memory_delta: int
    row_count: int


def clamp(min_size: int, max_size: int, value: int) -> int:
    return max(min_size, min(max_size, value))


class AdaptiveScheduler:
    """
    Owns the current batch size.

    Attributes:
        current_size: Batch size for the next pull, always in [min_size, max_size]
        samples: Rolling window of the last ``WINDOW_SIZE`` batch samples
    """

    def __init__(
        self,
        monitor: Optional[ResourceMonitor] = None,
        min_size: int = 5,
        max_size: int = 100,
        initial: int = 10,
        available_memory: Optional[int] = None,
        per_record_memory: int = PER_RECORD_MEMORY,
        safety_fraction: float = SAFETY_FRACTION
    ):
        if min_size < 1 or max_size < min_size:
            raise ValueError(f"Invalid batch bounds [{min_size}, {max_size}]")

        self.monitor = monitor
        self.min_size = min_size
        self.max_size = max_size
        self.samples: Deque[BatchSample] = deque(maxlen=WINDOW_SIZE)

        if available_memory:
            self.current_size = self.initial_size(
                available_memory, per_record_memory, safety_fraction,
                min_size=min_size, max_size=max_size
            )
        else:
            self.current_size = clamp(min_size, max_size, initial)

        logger.debug(
            "Adaptive batch size initialised",
            extra={"context": {
                "available_memory": available_memory,
                "batch_size": self.current_size,
            }}
        )

    @staticmethod
    def initial_size(
        available_memory: int,
        per_record_memory: int = PER_RECORD_MEMORY,
        safety_fraction: float = SAFETY_FRACTION,
        min_size: int = 5,
        max_size: int = 100
    ) -> int:
        """clamp(min, max, floor(available * safety / per_record))"""
        safe = math.floor(available_memory * safety_fraction / per_record_memory)
        return clamp(min_size, max_size, safe)

    def record_outcome(self, duration: float, memory_delta: int, row_count: int):
        self.samples.append(BatchSample(duration, memory_delta, row_count))

    def _memory_critical(self) -> bool:
        return self.monitor is not None and self.monitor.is_critical()

    def adjust(self) -> int:
        """
        Recompute the batch size from the last ``MIN_SAMPLES`` samples.

        No-op until enough samples exist.
        """
        if len(self.samples) < MIN_SAMPLES:
            return self.current_size

        recent: List[BatchSample] = list(self.samples)[-MIN_SAMPLES:]
        avg_time = sum(s.duration for s in recent) / len(recent)
        avg_memory = sum(s.memory_delta for s in recent) / len(recent)
        critical = self._memory_critical()

        previous = self.current_size
        if avg_time > SLOW_BATCH_SECONDS or critical:
            self.current_size = clamp(
                self.min_size, self.max_size, math.floor(self.current_size * SHRINK_FACTOR)
            )
        elif avg_time < FAST_BATCH_SECONDS:
            self.current_size = clamp(
                self.min_size, self.max_size, math.ceil(self.current_size * GROW_FACTOR)
            )

        if self.current_size != previous:
            logger.debug(
                "Batch size adjusted",
                extra={"context": {
                    "old_size": previous,
                    "new_size": self.current_size,
                    "avg_time": round(avg_time, 2),
                    "avg_memory": int(avg_memory),
                    "memory_critical": critical,
                }}
            )
        return self.current_size
