import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import create_engine
from core.logging import setup_logging
from models.base import Base
# Import all models to ensure they are registered
from models.import_run import ImportRun
from models.checkpoint import ImportCheckpoint
from models.run_lock import ImportLock
from models.progress import ImportProgress
from models.imported_record import ImportedRecord

logger = logging.getLogger(__name__)


async def init_database(url: str = None):
    logger.info("Connecting to database...")
    engine = create_engine(url)

    async with engine.begin() as conn:
        logger.info("Creating tables...")
        await conn.run_sync(Base.metadata.create_all)
        logger.info("Tables created successfully.")

    await engine.dispose()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(init_database())
