"""
Custom exceptions for the import pipeline with structured error context.

This module provides the exception hierarchy used throughout the import
pipeline. Each exception carries context information for debugging and
for the structured failure results returned to callers.

Exception Hierarchy:
    IngestionError (base)
    ├── SourceError
    │   ├── SourceUnavailable
    │   │   └── NetworkError
    │   ├── EmptySource
    │   └── MissingColumns
    ├── RunStateError
    │   ├── AlreadyRunning
    │   └── ImportCancelled
    ├── RecordError
    │   ├── ValidationError
    │   ├── DuplicateError
    │   └── SinkError
    ├── ResourceError
    │   ├── MemoryExhausted
    │   └── TimeBudgetExceeded
    ├── TooManyErrors
    ├── CheckpointError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any, List
from datetime import datetime


class IngestionError(Exception):
    """
    Base exception for all import-related errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (source, line, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.utcnow()

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(IngestionError):
    """
    Mixin for errors that should trigger retry logic.

    Use this for transient errors like:
    - Network timeouts
    - Rate limiting (HTTP 429)
    - Service unavailable (HTTP 5xx)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0
    ):
        super().__init__(message, context, original_exception)
        self.max_retries = max_retries
        self.retry_delay = retry_delay


class NonRetryableError(IngestionError):
    """
    Mixin for errors that should NOT trigger retry logic.

    Use this for permanent errors like:
    - Authentication failures (HTTP 401, 403)
    - Resource not found (HTTP 404)
    - Malformed input
    """
    pass


# ============================================================================
# Source Errors (fatal, raised before processing starts)
# ============================================================================

class SourceError(IngestionError):
    """Base exception for problems with the import source."""
    pass


class SourceUnavailable(SourceError):
    """
    Raised when the source cannot be resolved or opened.

    Context should include:
        - source: The source descriptor (path or URL)
        - status_code: HTTP status code (remote sources, if applicable)
    """
    pass


class NetworkError(RetryableError, SourceUnavailable):
    """Transient network failure while opening a remote source."""
    pass


class EmptySource(NonRetryableError, SourceError):
    """Raised when the source has no header row."""
    pass


class MissingColumns(NonRetryableError, SourceError):
    """
    Raised when required columns are absent from the header.

    Attributes:
        missing: Names of the required columns not found in the header
    """

    def __init__(
        self,
        missing: List[str],
        context: Optional[Dict[str, Any]] = None
    ):
        self.missing = list(missing)
        context = dict(context or {})
        context["missing"] = self.missing
        super().__init__(f"Required columns missing: {', '.join(self.missing)}", context)


# ============================================================================
# Run State Errors
# ============================================================================

class RunStateError(IngestionError):
    """Base exception for run lifecycle violations."""
    pass


class AlreadyRunning(RunStateError):
    """Raised when another run holds the import lock."""
    pass


class ImportCancelled(RunStateError):
    """Raised when a stop was requested between batches."""
    pass


# ============================================================================
# Record Errors (per-record, recoverable)
# ============================================================================

class RecordError(IngestionError):
    """
    Base exception for failures materializing a single record.

    Context should include:
        - line: Source line number of the record (if known)
        - field: Field that caused the error (if applicable)
    """
    pass


class ValidationError(RecordError):
    """Record content is invalid (e.g. missing title)."""
    pass


class DuplicateError(RecordError):
    """
    Record already exists in the target store.

    This is a skip signal: it is counted as skipped, never as an error.
    """
    pass


class SinkError(RecordError):
    """The target store rejected or failed to persist the record."""
    pass


# ============================================================================
# Resource Errors
# ============================================================================

class ResourceError(IngestionError):
    """Base exception for host resource exhaustion."""
    pass


class MemoryExhausted(ResourceError):
    """Memory stayed critical after an emergency cleanup attempt."""
    pass


class TimeBudgetExceeded(ResourceError):
    """
    The run stopped voluntarily before the host time budget ran out.

    The checkpoint is kept so the import can be resumed.
    """
    pass


# ============================================================================
# Run-level Errors
# ============================================================================

class TooManyErrors(IngestionError):
    """The running error total crossed the configured ceiling."""
    pass


class CheckpointError(IngestionError):
    """
    Raised when checkpoint persistence fails.

    Context should include:
        - key: Checkpoint key
        - operation: Operation that failed (load, save, clear)
    """
    pass
