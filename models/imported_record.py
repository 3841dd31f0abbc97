from sqlalchemy import Column, BigInteger, String, Text, DateTime, Integer, JSON, Index
from datetime import datetime
from models.base import Base


class ImportedRecord(Base):
    """
    Target store for rows written by the default SQL materializer.

    Field Mapping Strategy:
    - post_title | title     -> title
    - post_content | content -> content (or the rendered template)
    - post_excerpt | excerpt -> excerpt
    - remaining non-empty columns -> meta, keys prefixed with "_"
    - slug is derived from the title and kept unique
    """
    __tablename__ = "imported_records"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)

    record_type = Column(String(50), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="draft")

    title = Column(String(500), nullable=False, index=True)
    slug = Column(String(200), nullable=False, unique=True)
    content = Column(Text, nullable=True)
    excerpt = Column(Text, nullable=True)
    meta = Column(JSON, nullable=True)

    # Import tracking
    import_run_id = Column(String(64), nullable=False, index=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    __table_args__ = (
        Index("idx_imported_type_title", "record_type", "title"),
    )
