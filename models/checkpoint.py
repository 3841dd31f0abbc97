from sqlalchemy import Column, Integer, String, DateTime, JSON
from datetime import datetime
from models.base import Base


class ImportCheckpoint(Base):
    """
    Durable resume position for an import.

    Purpose:
    - Resume an interrupted import from the last saved position
    - Survive process restarts

    Design:
    - One row per logical import (source + configuration fingerprint)
    - ``data`` holds the full checkpoint payload; ``processed`` and
      ``total`` are duplicated as columns for inspection
    """
    __tablename__ = "import_checkpoints"

    key = Column(String(128), primary_key=True)
    run_id = Column(String(64), nullable=False, index=True)

    processed = Column(Integer, nullable=False, default=0)
    total = Column(Integer, nullable=False, default=0)
    data = Column(JSON, nullable=False)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
