from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from estimator.app.domains.job.models import JobStatus, JobType


class ImportClassifyJobCreate(BaseModel):
    estimate_id: int
    import_session_id: UUID
    correlation_id: str | None = None


class SnapshotJobCreate(BaseModel):
    estimate_id: int
    reason: str = "manual"
    correlation_id: str | None = None


class JobResponse(BaseModel):
    id: UUID
    job_type: JobType
    status: JobStatus
    estimate_id: Optional[int] = None
    payload: dict[str, Any]
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    attempts: int = 0
    max_attempts: int = 3
    worker_id: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class JobListQuery(BaseModel):
    status: Optional[JobStatus] = None
    job_type: Optional[JobType] = None
    estimate_id: Optional[int] = None
    skip: int = Field(default=0, ge=0)
    limit: int = Field(default=100, ge=1, le=1000)


class JobCountResponse(BaseModel):
    pending: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0
