"""
FastAPI dependencies
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import ImportConfig, get_config
from core.database import async_session_maker


def get_session_factory() -> async_sessionmaker:
    """Session factory shared by request handlers and background imports"""
    return async_session_maker


def get_import_config() -> ImportConfig:
    return get_config()


async def get_db(factory: async_sessionmaker = Depends(get_session_factory)) -> AsyncSession:
    """Get database session"""
    async with factory() as session:
        yield session
