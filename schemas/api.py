"""
Pydantic schemas for API request/response models
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from models.base import RunStatus


# ============================================================================
# Health Check Schemas
# ============================================================================

class HealthCheckResponse(BaseModel):
    """Health check response model"""
    status: str = Field(..., description="Overall system status: healthy, busy, unhealthy")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    database_connected: bool
    import_running: bool = False
    last_run_status: Optional[RunStatus] = None
    last_run_at: Optional[datetime] = None

    class Config:
        use_enum_values = True
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "database_connected": True,
                "import_running": False,
                "last_run_status": "completed",
                "last_run_at": "2024-01-15T10:00:00Z"
            }
        }


# ============================================================================
# Import Schemas
# ============================================================================

class ImportRequest(BaseModel):
    """Request body for starting an import"""
    source: Optional[str] = Field(
        None,
        description="local, remote, dropbox, a file path or an http(s) URL; defaults to IMPORT_SOURCE"
    )
    resume: bool = Field(True, description="Continue from a checkpoint left by an interrupted run")

    @field_validator("source")
    @classmethod
    def blank_source_is_default(cls, v):
        if v is not None and not v.strip():
            return None
        return v


class ImportAccepted(BaseModel):
    """Response for an import started in the background"""
    source: str
    resume: bool
    message: str = "Import started"


class ProgressResponse(BaseModel):
    """Progress of the current (or last finished) import"""
    active: bool
    phase: str = "idle"
    processed: int = 0
    total: int = 0
    percent: float = 0.0
    updated_at: Optional[datetime] = None


class ImportRunResponse(BaseModel):
    """Import run audit record"""
    run_id: str
    source: str
    status: RunStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    records_total: int = 0
    records_created: int = 0
    records_skipped: int = 0
    records_failed: int = 0
    resumed_from: int = 0
    error_message: Optional[str] = None
    error_details: Optional[List[Dict[str, Any]]] = None
    peak_memory: Optional[int] = None
    records_per_second: Optional[float] = None

    class Config:
        from_attributes = True
        use_enum_values = True


class ImportRunList(BaseModel):
    runs: List[ImportRunResponse] = Field(default_factory=list)
    total: int = 0


class MemoryResponse(BaseModel):
    """Current process memory against the configured ceiling"""
    current: int
    peak: int
    limit: int
    available: Optional[int] = None
    percent: float
    level: str
    suggestions: List[str] = Field(default_factory=list)
