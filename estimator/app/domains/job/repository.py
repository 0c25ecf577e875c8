from datetime import timedelta
from typing import Sequence, Optional
import uuid

from sqlalchemy import select, and_, func
from sqlalchemy.ext.asyncio import AsyncSession

from estimator.app.domains.job.models import Job, JobStatus, JobType
from estimator.app.infrastructure.datetime_utils import utc_now


class JobRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, job: Job) -> Job:
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: uuid.UUID) -> Optional[Job]:
        stmt = select(Job).where(Job.id == job_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_all(
        self,
        status_filter: Optional[JobStatus] = None,
        job_type: Optional[JobType] = None,
        estimate_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Sequence[Job]:
        stmt = select(Job)
        if status_filter:
            stmt = stmt.where(Job.status == status_filter)
        if job_type:
            stmt = stmt.where(Job.job_type == job_type)
        if estimate_id is not None:
            stmt = stmt.where(Job.estimate_id == estimate_id)
        stmt = stmt.offset(skip).limit(limit).order_by(Job.created_at.desc())
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def find_pending(self, job_type: JobType, estimate_id: int) -> Optional[Job]:
        """Oldest PENDING job of the given type for an estimate."""
        stmt = (
            select(Job)
            .where(
                and_(
                    Job.job_type == job_type,
                    Job.estimate_id == estimate_id,
                    Job.status == JobStatus.PENDING,
                )
            )
            .order_by(Job.created_at.asc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def claim_pending_job(
        self, worker_id: str, job_types: Optional[list[JobType]] = None
    ) -> Optional[Job]:
        """
        Atomically claim the oldest pending job for the given worker.
        Uses SELECT FOR UPDATE SKIP LOCKED for atomic claiming.
        Returns the claimed job or None if no jobs available.
        """
        stmt = (
            select(Job)
            .where(Job.status == JobStatus.PENDING)
            .order_by(Job.created_at.asc())
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        if job_types:
            stmt = stmt.where(Job.job_type.in_(job_types))

        result = await self.session.execute(stmt)
        job = result.scalar_one_or_none()

        if job:
            job.status = JobStatus.RUNNING
            job.worker_id = worker_id
            job.attempts = (job.attempts or 0) + 1
            job.started_at = utc_now()
            job.updated_at = utc_now()
            await self.session.flush()

        return job

    async def complete_job(
        self, job_id: uuid.UUID, result: Optional[dict] = None
    ) -> Optional[Job]:
        """Mark a job as completed with optional result data."""
        job = await self.get_by_id(job_id)
        if not job or job.status != JobStatus.RUNNING:
            return None

        job.status = JobStatus.COMPLETED
        job.result = result
        job.completed_at = utc_now()
        job.updated_at = utc_now()
        await self.session.flush()
        return job

    async def fail_job(
        self, job_id: uuid.UUID, error: str
    ) -> Optional[Job]:
        """Mark a job as failed with error information."""
        job = await self.get_by_id(job_id)
        if not job or job.is_terminal:
            return None

        job.status = JobStatus.FAILED
        job.error = error
        job.completed_at = utc_now()
        job.updated_at = utc_now()
        await self.session.flush()
        return job

    async def requeue_job(self, job_id: uuid.UUID, error: str) -> Optional[Job]:
        """Put a RUNNING job back to PENDING after a retryable failure."""
        job = await self.get_by_id(job_id)
        if not job or job.status != JobStatus.RUNNING:
            return None

        job.status = JobStatus.PENDING
        job.worker_id = None
        job.started_at = None
        job.error = error
        job.updated_at = utc_now()
        await self.session.flush()
        return job

    async def find_stuck_jobs(self, timeout_minutes: int = 30) -> Sequence[Job]:
        """
        Find jobs that have been RUNNING longer than the timeout.
        These may be from crashed workers.
        """
        threshold = utc_now() - timedelta(minutes=timeout_minutes)
        stmt = select(Job).where(
            and_(
                Job.status == JobStatus.RUNNING,
                Job.started_at < threshold,
            )
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def reset_stuck_job(self, job_id: uuid.UUID, reason: str) -> Optional[Job]:
        """
        Reset a stuck job back to PENDING status for retry.
        Records the reset reason in the error field.
        """
        return await self.requeue_job(job_id, f"Reset: {reason}")

    async def count_by_status(self) -> dict[JobStatus, int]:
        """Get count of jobs by status."""
        stmt = select(Job.status, func.count(Job.id)).group_by(Job.status)
        result = await self.session.execute(stmt)
        return {row[0]: row[1] for row in result.all()}
