"""
Progress reporting for the import currently in progress.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from models.progress import ImportProgress

PROGRESS_KEY = "csv_import"


@dataclass(frozen=True)
class ProgressState:
    processed: int
    total: int
    phase: str
    updated_at: Optional[datetime] = None

    @property
    def percent(self) -> float:
        if self.total <= 0:
            return 0.0
        return round(min(100.0, self.processed / self.total * 100), 1)


class ProgressSink(ABC):
    """Contract for progress reporting"""

    @abstractmethod
    async def update(self, processed: int, total: int, phase: str):
        pass

    @abstractmethod
    async def get(self) -> Optional[ProgressState]:
        pass

    @abstractmethod
    async def clear(self):
        pass


class SQLProgressSink(ProgressSink):
    """Single-row progress on the ``import_progress`` table"""

    def __init__(self, session_factory: async_sessionmaker, key: str = PROGRESS_KEY):
        self.session_factory = session_factory
        self.key = key

    async def update(self, processed: int, total: int, phase: str):
        async with self.session_factory() as session:
            row = await session.get(ImportProgress, self.key)
            if row is None:
                row = ImportProgress(key=self.key)
                session.add(row)
            row.processed = processed
            row.total = total
            row.phase = phase
            row.updated_at = datetime.utcnow()
            await session.commit()

    async def get(self) -> Optional[ProgressState]:
        async with self.session_factory() as session:
            row = await session.get(ImportProgress, self.key)
            if row is None:
                return None
            return ProgressState(row.processed, row.total, row.phase, row.updated_at)

    async def clear(self):
        async with self.session_factory() as session:
            row = await session.get(ImportProgress, self.key)
            if row is not None:
                await session.delete(row)
                await session.commit()
