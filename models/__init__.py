"""
SQLAlchemy ORM models for database tables.

This package defines the database schema using SQLAlchemy ORM models:

Models:
    base: Base declarative class and the RunStatus enum
    import_run: Import run tracking and metrics
    checkpoint: Durable resume positions
    run_lock: Exclusive import lock
    progress: Last reported progress
    imported_record: Rows written by the default materializer

Database Schema:
    All models inherit from the Base declarative class and use portable
    column types (JSON rather than JSONB) so the same schema runs on
    PostgreSQL in production and SQLite in tests.

Usage:
    from models.base import Base, RunStatus
    from models.import_run import ImportRun

Example:
    run = ImportRun(run_id="imp_1700000000_ab12", source="/data/posts.csv")
    session.add(run)
    await session.commit()
"""

__all__ = [
    "Base",
    "RunStatus",
    "ImportRun",
    "ImportCheckpoint",
    "ImportLock",
    "ImportProgress",
    "ImportedRecord",
]
