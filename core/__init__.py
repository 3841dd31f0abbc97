"""
Core utilities and configuration for the CSV import service.

This package provides foundational components used throughout the pipeline:

Modules:
    config: Application settings and the per-run ImportConfig snapshot
    database: Database engine and session management
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and structured-context helpers

Usage:
    from core.config import settings, ImportConfig
    from core.database import async_session_maker
    from core.exceptions import MissingColumns, SourceUnavailable
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()

    # Snapshot the configuration for a run
    config = ImportConfig.from_settings()
"""

__all__ = [
    "settings",
    "ImportConfig",
    "async_session_maker",
    "setup_logging",
    # Exceptions
    "IngestionError",
    "SourceError",
    "SourceUnavailable",
    "NetworkError",
    "EmptySource",
    "MissingColumns",
    "RunStateError",
    "AlreadyRunning",
    "ImportCancelled",
    "RecordError",
    "ValidationError",
    "DuplicateError",
    "SinkError",
    "ResourceError",
    "MemoryExhausted",
    "TimeBudgetExceeded",
    "TooManyErrors",
    "CheckpointError",
    "RetryableError",
    "NonRetryableError",
]
