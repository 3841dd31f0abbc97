"""
Pytest configuration and fixtures
"""

import csv
import os

# Settings are read at import time; keep tests off the production database
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./.pytest_import.db")
os.environ.setdefault("IMPORT_MEMORY_LIMIT", "0")
os.environ.setdefault("IMPORT_INTER_BATCH_DELAY", "0")
os.environ.setdefault("IMPORT_SCHEDULE_MINUTES", "0")

from types import SimpleNamespace
from typing import AsyncGenerator, List, Optional, Sequence

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import ImportConfig
from core.database import create_engine, create_session_factory
from ingestion.checkpoint import CheckpointStore
from ingestion.runner import IngestionRunner
from models.base import Base
from tests.fakes import (
    MemoryKeyValueStore,
    MemoryLockStore,
    MemoryProgressSink,
    RecordingMaterializer,
    quiet_monitor,
)


# ============================================================================
# Database
# ============================================================================

@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Create a file-backed SQLite engine with all tables"""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'test_import.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return create_session_factory(test_engine)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ============================================================================
# Data and runner fixtures
# ============================================================================

@pytest.fixture
def write_csv(tmp_path):
    """Write rows to a CSV file and return its path"""

    def _write(rows: Sequence[Sequence[str]], header: Sequence[str] = ("title", "content"), name: str = "import.csv") -> str:
        path = tmp_path / name
        with path.open("w", newline="", encoding="utf-8") as handle:
            writer = csv.writer(handle)
            writer.writerow(header)
            writer.writerows(rows)
        return str(path)

    return _write


@pytest.fixture
def numbered_rows():
    """``count`` rows titled "Row 1" .. "Row <count>" """

    def _rows(count: int) -> List[List[str]]:
        return [[f"Row {i}", f"Content {i}"] for i in range(1, count + 1)]

    return _rows


@pytest.fixture
def import_config():
    return ImportConfig(
        required_columns=["title"],
        memory_limit=0,
        inter_batch_delay=0,
        checkpoint_interval=50,
        error_ceiling=100,
    )


@pytest.fixture
def make_runner(import_config):
    """Build an IngestionRunner wired to in-memory collaborators"""

    def _make(config: Optional[ImportConfig] = None, **kwargs) -> SimpleNamespace:
        parts = SimpleNamespace(
            config=config or import_config,
            materializer=kwargs.pop("materializer", None) or RecordingMaterializer(),
            locks=kwargs.pop("locks", None) or MemoryLockStore(),
            progress=kwargs.pop("progress", None) or MemoryProgressSink(),
            kv=kwargs.pop("kv", None) or MemoryKeyValueStore(),
        )
        kwargs.setdefault("monitor", quiet_monitor())
        parts.checkpoints = CheckpointStore(parts.kv)
        parts.runner = IngestionRunner(
            materializer=parts.materializer,
            checkpoints=parts.checkpoints,
            locks=parts.locks,
            progress=parts.progress,
            config_provider=lambda: parts.config,
            **kwargs
        )
        return parts

    return _make
