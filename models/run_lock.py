from sqlalchemy import Column, String, DateTime
from datetime import datetime
from models.base import Base


class ImportLock(Base):
    """
    Exclusive lock held by the import currently in progress.

    The primary key makes acquisition an insert-or-fail operation, so a
    second run against the same key is rejected without waiting.
    """
    __tablename__ = "import_locks"

    key = Column(String(128), primary_key=True)
    owner = Column(String(64), nullable=True)
    acquired_at = Column(DateTime, nullable=False, default=datetime.utcnow)
