import uuid
from datetime import datetime
from enum import Enum as PyEnum
from typing import Any, Optional

from sqlalchemy import DateTime
from sqlalchemy import Enum as SQLEnum
from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from estimator.app.infrastructure.database import Base
from estimator.app.infrastructure.datetime_utils import utc_now


class JobType(str, PyEnum):
    IMPORT_CLASSIFY = "IMPORT_CLASSIFY"
    GENERATE_SNAPSHOT = "GENERATE_SNAPSHOT"


class JobStatus(str, PyEnum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    FAILED = "FAILED"
    COMPLETED = "COMPLETED"


VALID_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.PENDING: {JobStatus.RUNNING, JobStatus.FAILED},
    # RUNNING -> PENDING is a retry of a retryable failure
    JobStatus.RUNNING: {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.PENDING},
    JobStatus.FAILED: set(),
    JobStatus.COMPLETED: set(),
}


class InvalidJobTransitionError(Exception):

    def __init__(self, job_id: uuid.UUID, from_status: JobStatus, to_status: JobStatus):
        self.job_id = job_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid job transition for {job_id}: {from_status.value} -> {to_status.value}"
        )


class Job(Base):
    __tablename__ = "jobs"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    job_type: Mapped[JobType] = mapped_column(
        SQLEnum(JobType, name="job_type_enum"), nullable=False
    )
    status: Mapped[JobStatus] = mapped_column(
        SQLEnum(JobStatus, name="job_status_enum"), nullable=False, default=JobStatus.PENDING
    )
    estimate_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
    result: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)

    worker_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        Index("ix_jobs_status", "status"),
        Index("ix_jobs_status_created", "status", "created_at"),
        Index("ix_jobs_type_estimate_status", "job_type", "estimate_id", "status"),
    )

    def can_transition_to(self, new_status: JobStatus) -> bool:
        return new_status in VALID_TRANSITIONS.get(self.status, set())

    def transition_to(self, new_status: JobStatus) -> None:
        if not self.can_transition_to(new_status):
            raise InvalidJobTransitionError(self.id, self.status, new_status)
        self.status = new_status
        self.updated_at = utc_now()

    @property
    def is_terminal(self) -> bool:
        return self.status in {JobStatus.COMPLETED, JobStatus.FAILED}

    @property
    def can_retry(self) -> bool:
        return self.attempts < self.max_attempts

    @property
    def import_session_id(self) -> Optional[uuid.UUID]:
        value = self.payload.get("import_session_id")
        if value:
            return uuid.UUID(value) if isinstance(value, str) else value
        return None
