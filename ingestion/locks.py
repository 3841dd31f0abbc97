"""
Exclusive import lock.

Acquisition never waits: a second run against a held key is rejected
immediately. Locks older than ``stale_after`` are treated as left behind
by a crashed process and taken over.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from models.run_lock import ImportLock

logger = logging.getLogger(__name__)

DEFAULT_LOCK_KEY = "csv_import"
STALE_LOCK_SECONDS = 3600


class LockStore(ABC):
    """Contract for the run lock"""

    @abstractmethod
    async def acquire(self, key: str, owner: Optional[str] = None) -> bool:
        """Take the lock; False if it is already held"""
        pass

    @abstractmethod
    async def release(self, key: str):
        pass

    @abstractmethod
    async def is_held(self, key: str) -> bool:
        pass


class SQLLockStore(LockStore):
    """Run lock on the ``import_locks`` table (insert-or-fail on the key)"""

    def __init__(self, session_factory: async_sessionmaker, stale_after: int = STALE_LOCK_SECONDS):
        self.session_factory = session_factory
        self.stale_after = stale_after

    async def _insert(self, key: str, owner: Optional[str]) -> bool:
        async with self.session_factory() as session:
            session.add(ImportLock(key=key, owner=owner, acquired_at=datetime.utcnow()))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False
        return True

    async def _expire_stale(self, key: str) -> bool:
        async with self.session_factory() as session:
            lock = await session.get(ImportLock, key)
            if lock is None:
                return True
            age = datetime.utcnow() - lock.acquired_at
            if age < timedelta(seconds=self.stale_after):
                return False
            logger.warning(
                "Removing stale import lock",
                extra={"context": {"key": key, "owner": lock.owner, "age_seconds": int(age.total_seconds())}}
            )
            await session.delete(lock)
            await session.commit()
            return True

    async def acquire(self, key: str, owner: Optional[str] = None) -> bool:
        if await self._insert(key, owner):
            return True
        if await self._expire_stale(key):
            return await self._insert(key, owner)
        return False

    async def release(self, key: str):
        async with self.session_factory() as session:
            lock = await session.get(ImportLock, key)
            if lock is not None:
                await session.delete(lock)
                await session.commit()

    async def is_held(self, key: str) -> bool:
        async with self.session_factory() as session:
            return await session.get(ImportLock, key) is not None
