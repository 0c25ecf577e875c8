from estimator.app.domains.job.models import (
    Job,
    JobStatus,
    JobType,
    InvalidJobTransitionError,
    VALID_TRANSITIONS,
)
from estimator.app.domains.job.schemas import (
    ImportClassifyJobCreate,
    SnapshotJobCreate,
    JobResponse,
    JobListQuery,
    JobCountResponse,
)
from estimator.app.domains.job.service import JobService
from estimator.app.domains.job.repository import JobRepository

__all__ = [
    "Job",
    "JobStatus",
    "JobType",
    "InvalidJobTransitionError",
    "VALID_TRANSITIONS",
    "ImportClassifyJobCreate",
    "SnapshotJobCreate",
    "JobResponse",
    "JobListQuery",
    "JobCountResponse",
    "JobService",
    "JobRepository",
]
