from sqlalchemy import Column, Integer, String, DateTime
from datetime import datetime
from models.base import Base


class ImportProgress(Base):
    """Last reported progress of an import, polled by the API"""
    __tablename__ = "import_progress"

    key = Column(String(128), primary_key=True)
    processed = Column(Integer, nullable=False, default=0)
    total = Column(Integer, nullable=False, default=0)
    phase = Column(String(32), nullable=False, default="idle")
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
