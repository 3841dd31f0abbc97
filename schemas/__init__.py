"""
Pydantic schemas for data validation and serialization.

Schemas:
    records: Create schema for records written by the default materializer
    api: API endpoint request/response schemas

Usage:
    from schemas.records import ImportedRecordCreate
    from schemas.api import ImportRequest, ProgressResponse

Validation:
    Titles are required and stripped of markup, meta values are
    coerced to strings; a failing record is reported as a per-record
    ValidationError and the import continues.
"""

__all__ = [
    "ImportedRecordCreate",
    "HealthCheckResponse",
    "ImportRequest",
    "ImportAccepted",
    "ProgressResponse",
    "ImportRunResponse",
    "ImportRunList",
    "MemoryResponse",
]
