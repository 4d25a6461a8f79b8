"""Job record data model for background processing."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class JobType(str, Enum):
    REGION_SCAN = "region-scan"                # Split a large region into scan cells
    BATCH_ENRICHMENT = "batch-enrichment"      # Owner lookups for many coordinates
    DEMOGRAPHIC_LOAD = "demographic-load"      # Census income tracts for a region
    COMBINED_ANALYSIS = "combined-analysis"    # Scan cells + demographics


QUEUED_MESSAGE = "Queued - waiting to start..."
CANCELLED_MESSAGE = "Cancelled by user"


class JobRecord(BaseModel):
    """Tracks the lifecycle of a background job."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: JobType
    status: JobStatus = JobStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    status_message: str = QUEUED_MESSAGE
    params: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    owner_id: str
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
