from sqlalchemy import Column, BigInteger, String, Enum, DateTime, Float, Integer, Text, JSON, Index
from datetime import datetime
from models.base import Base, RunStatus


class ImportRun(Base):
    """
    Tracks metadata for each import run.

    Purpose:
    - Audit trail of all import runs
    - Performance monitoring (duration, peak memory, throughput)
    - Error tracking and debugging
    """
    __tablename__ = "import_runs"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    run_id = Column(String(64), unique=True, nullable=False, index=True)

    # Source identification
    source = Column(String(2048), nullable=False)

    # Run metadata
    status = Column(Enum(RunStatus), default=RunStatus.STARTING, nullable=False, index=True)

    # Timestamps
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    completed_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Float, nullable=True)

    # Statistics
    records_total = Column(Integer, default=0)
    records_created = Column(Integer, default=0)
    records_skipped = Column(Integer, default=0)
    records_failed = Column(Integer, default=0)
    resumed_from = Column(Integer, default=0)

    # Error tracking
    error_message = Column(Text, nullable=True)
    error_details = Column(JSON, nullable=True)

    # Configuration snapshot
    config_snapshot = Column(JSON, nullable=True)

    # Performance metrics
    peak_memory = Column(BigInteger, nullable=True)
    records_per_second = Column(Float, nullable=True)

    __table_args__ = (
        Index("idx_import_run_status", "status", "started_at"),
    )
