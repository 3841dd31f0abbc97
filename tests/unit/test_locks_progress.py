"""
Unit tests for the SQL run lock and progress sink
"""

from datetime import datetime, timedelta

import pytest

from ingestion.locks import DEFAULT_LOCK_KEY, SQLLockStore
from ingestion.progress import ProgressState, SQLProgressSink
from models.run_lock import ImportLock


class TestSQLLockStore:
    """Test insert-or-fail locking"""

    @pytest.mark.asyncio
    async def test_second_acquire_fails(self, session_factory):
        locks = SQLLockStore(session_factory)

        assert await locks.acquire(DEFAULT_LOCK_KEY, owner="run_a")
        assert not await locks.acquire(DEFAULT_LOCK_KEY, owner="run_b")
        assert await locks.is_held(DEFAULT_LOCK_KEY)

        await locks.release(DEFAULT_LOCK_KEY)
        assert not await locks.is_held(DEFAULT_LOCK_KEY)
        assert await locks.acquire(DEFAULT_LOCK_KEY, owner="run_b")

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, session_factory):
        locks = SQLLockStore(session_factory)
        assert await locks.acquire("import_a")
        assert await locks.acquire("import_b")

    @pytest.mark.asyncio
    async def test_stale_lock_is_taken_over(self, session_factory):
        async with session_factory() as session:
            session.add(ImportLock(
                key=DEFAULT_LOCK_KEY,
                owner="crashed",
                acquired_at=datetime.utcnow() - timedelta(hours=2),
            ))
            await session.commit()

        locks = SQLLockStore(session_factory, stale_after=3600)
        assert await locks.acquire(DEFAULT_LOCK_KEY, owner="run_new")

        async with session_factory() as session:
            lock = await session.get(ImportLock, DEFAULT_LOCK_KEY)
            assert lock.owner == "run_new"

    @pytest.mark.asyncio
    async def test_release_unheld_is_noop(self, session_factory):
        await SQLLockStore(session_factory).release("missing")


class TestSQLProgressSink:
    @pytest.mark.asyncio
    async def test_update_get_clear(self, session_factory):
        progress = SQLProgressSink(session_factory)
        assert await progress.get() is None

        await progress.update(10, 100, "processing")
        await progress.update(40, 100, "processing")
        state = await progress.get()

        assert state.processed == 40
        assert state.total == 100
        assert state.phase == "processing"
        assert state.percent == 40.0

        await progress.clear()
        assert await progress.get() is None


def test_progress_percent_bounds():
    assert ProgressState(5, 0, "starting").percent == 0.0
    assert ProgressState(150, 100, "processing").percent == 100.0
