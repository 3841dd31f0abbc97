"""
Process memory monitoring against the configured ceiling.
"""

import gc
import logging
import os
import sys
from dataclasses import dataclass, asdict
from typing import Callable, Dict, List, Optional, Tuple

try:
    import resource
except ImportError:  # Windows
    resource = None

logger = logging.getLogger(__name__)

GOOD = "good"
OK = "ok"
WARNING = "warning"
CRITICAL = "critical"

MAX_CRITICAL_WARNINGS = 3

_REMEDIATIONS: Dict[str, List[str]] = {
    CRITICAL: [
        "Reduce the batch size to 5-10 records",
        "Run an emergency cleanup (garbage collection, cache flush)",
        "Raise the memory limit for the import process",
    ],
    WARNING: [
        "Monitor memory usage more closely",
        "Reduce concurrent processes on the host",
    ],
    OK: [],
    GOOD: [
        "Larger batch sizes (50-100 records) are safe",
    ],
}


def classify(percent: float) -> str:
    """Map a usage percentage to a pressure level"""
    if percent < 50:
        return GOOD
    if percent < 70:
        return OK
    if percent < 85:
        return WARNING
    return CRITICAL


def suggest_remediations(level: str) -> List[str]:
    """Static advice for a pressure level, most important first"""
    return list(_REMEDIATIONS.get(level, []))


def read_process_memory() -> Tuple[int, int]:
    """
    Current and peak resident memory of this process in bytes.

    Uses /proc/self/statm where available and falls back to getrusage,
    which only reports the peak.
    """
    peak = 0
    if resource is not None:
        peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
        # Linux reports kilobytes, macOS bytes
        if sys.platform != "darwin":
            peak *= 1024

    current = 0
    try:
        with open("/proc/self/statm") as handle:
            current = int(handle.read().split()[1]) * os.sysconf("SC_PAGE_SIZE")
    except (OSError, ValueError, IndexError, AttributeError):
        current = peak

    return current, max(current, peak)


@dataclass(frozen=True)
class MemorySample:
    """Snapshot of memory usage against the ceiling"""
    current: int
    peak: int
    limit: int
    percent: float
    level: str

    @property
    def available(self) -> Optional[int]:
        """Bytes left under the ceiling, None when unlimited"""
        if self.limit <= 0:
            return None
        return max(0, self.limit - self.current)

    @property
    def critical(self) -> bool:
        return self.level == CRITICAL

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["available"] = self.available
        return data


class ResourceMonitor:
    """
    Samples process memory and classifies pressure.

    Levels: <50% good, <70% ok, <85% warning, >=85% critical. A ceiling of
    0 or less means unlimited and always classifies as good.

    Critical warnings are logged at most ``max_warnings`` times per monitor
    instance (one instance per run). The classification itself is never
    throttled.
    """

    def __init__(
        self,
        limit: int = 0,
        usage_reader: Callable[[], Tuple[int, int]] = read_process_memory,
        max_warnings: int = MAX_CRITICAL_WARNINGS
    ):
        self.limit = limit
        self.usage_reader = usage_reader
        self.max_warnings = max_warnings
        self.warnings_emitted = 0
        self.peak = 0
        self.last_sample: Optional[MemorySample] = None

    def sample(self) -> MemorySample:
        current, peak = self.usage_reader()
        self.peak = max(self.peak, peak, current)

        if self.limit > 0:
            percent = round(current / self.limit * 100, 1)
            level = classify(percent)
        else:
            percent = 0.0
            level = GOOD

        sample = MemorySample(
            current=current,
            peak=self.peak,
            limit=self.limit,
            percent=percent,
            level=level,
        )

        if level == CRITICAL and self.warnings_emitted < self.max_warnings:
            self.warnings_emitted += 1
            logger.warning(
                "Critical memory usage",
                extra={"context": {
                    "usage_percent": percent,
                    "current_memory": current,
                    "memory_limit": self.limit,
                }}
            )

        self.last_sample = sample
        return sample

    def is_critical(self) -> bool:
        return self.sample().critical

    def reset(self):
        """Start a new run: clear the warning budget and peak"""
        self.warnings_emitted = 0
        self.peak = 0
        self.last_sample = None


def emergency_cleanup():
    """Default emergency cleanup hook: force a garbage collection"""
    collected = gc.collect()
    logger.warning(f"Emergency memory cleanup collected {collected} objects")
