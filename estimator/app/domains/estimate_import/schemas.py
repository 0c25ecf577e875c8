from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from estimator.app.domains.estimate_import.models import ImportStatus


class ImportSessionResponse(BaseModel):
    id: UUID
    estimate_id: int
    file_name: str
    source_path: str
    status: ImportStatus
    stats: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ImportStartResponse(BaseModel):
    session: ImportSessionResponse
    job_id: UUID


class ImportStats(BaseModel):
    """Progress counters stored on the session after every chunk."""

    total_rows: int = 0
    processed_rows: int = 0
    sections_created: int = 0
    items_created: int = 0
    skipped_rows: int = 0
    needs_review: int = 0
    by_source: dict[str, int] = Field(default_factory=dict)
    by_label: dict[str, int] = Field(default_factory=dict)
    duration_ms: float = 0.0
