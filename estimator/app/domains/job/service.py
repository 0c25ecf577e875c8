from typing import Optional, Sequence
from uuid import UUID

from estimator.app.domains.job.models import Job, JobStatus, JobType
from estimator.app.domains.job.repository import JobRepository
from estimator.app.domains.job.schemas import ImportClassifyJobCreate, SnapshotJobCreate
from estimator.app.logging_config import get_logger

logger = get_logger("app.domains.job.service")

DEFAULT_MAX_ATTEMPTS = 3


class JobService:
    def __init__(self, repo: JobRepository, max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        self.repo = repo
        self.max_attempts = max_attempts

    async def get_job(self, job_id: UUID) -> Optional[Job]:
        return await self.repo.get_by_id(job_id)

    async def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        job_type: Optional[JobType] = None,
        estimate_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Sequence[Job]:
        return await self.repo.list_all(
            status_filter=status,
            job_type=job_type,
            estimate_id=estimate_id,
            skip=skip,
            limit=limit,
        )

    async def get_job_counts(self) -> dict[JobStatus, int]:
        return await self.repo.count_by_status()

    async def create_import_job(self, data: ImportClassifyJobCreate) -> Job:
        job = Job(
            job_type=JobType.IMPORT_CLASSIFY,
            estimate_id=data.estimate_id,
            payload={
                "estimate_id": data.estimate_id,
                "import_session_id": str(data.import_session_id),
                "correlation_id": data.correlation_id,
            },
            status=JobStatus.PENDING,
            attempts=0,
            max_attempts=self.max_attempts,
        )
        created = await self.repo.create(job)
        logger.info(
            f"Created IMPORT_CLASSIFY job {created.id} for import session "
            f"{data.import_session_id} (estimate {data.estimate_id})"
        )
        return created

    async def enqueue_snapshot(self, data: SnapshotJobCreate) -> Job:
        """
        Queue snapshot generation for an estimate.

        A PENDING snapshot job for the same estimate already covers any change
        made before it runs, so it is returned instead of creating another one.
        """
        existing = await self.repo.find_pending(JobType.GENERATE_SNAPSHOT, data.estimate_id)
        if existing is not None:
            logger.debug(
                f"Snapshot job {existing.id} already pending for estimate {data.estimate_id}"
            )
            return existing

        job = Job(
            job_type=JobType.GENERATE_SNAPSHOT,
            estimate_id=data.estimate_id,
            payload={
                "estimate_id": data.estimate_id,
                "reason": data.reason,
                "correlation_id": data.correlation_id,
            },
            status=JobStatus.PENDING,
            attempts=0,
            max_attempts=self.max_attempts,
        )
        created = await self.repo.create(job)
        logger.info(
            f"Created GENERATE_SNAPSHOT job {created.id} for estimate {data.estimate_id} "
            f"({data.reason})"
        )
        return created

    async def claim_job(
        self, worker_id: str, job_types: Optional[list[JobType]] = None
    ) -> Optional[Job]:
        job = await self.repo.claim_pending_job(worker_id, job_types)
        if job:
            logger.info(
                f"Worker {worker_id} claimed job {job.id} ({job.job_type.value}, "
                f"attempt {job.attempts}/{job.max_attempts})"
            )
        return job

    async def complete_job(self, job_id: UUID, result: Optional[dict] = None) -> Optional[Job]:
        job = await self.repo.complete_job(job_id, result)
        if job:
            logger.info(f"Job {job_id} completed successfully")
        return job

    async def fail_job(
        self, job_id: UUID, error: str, retryable: bool = False
    ) -> Optional[Job]:
        """Fail a job, or put it back in the queue when the failure is retryable
        and attempts remain."""
        job = await self.repo.get_by_id(job_id)
        if not job or job.is_terminal:
            return None

        if retryable and job.status == JobStatus.RUNNING and job.can_retry:
            requeued = await self.repo.requeue_job(job_id, error)
            logger.warning(
                f"Job {job_id} failed (attempt {job.attempts}/{job.max_attempts}), "
                f"requeued: {error}"
            )
            return requeued

        failed = await self.repo.fail_job(job_id, error)
        if failed:
            logger.warning(f"Job {job_id} failed: {error}")
        return failed

    async def cancel_job(self, job_id: UUID) -> bool:
        job = await self.repo.get_by_id(job_id)
        if not job:
            return False
        if job.is_terminal:
            return False

        await self.repo.fail_job(job_id, "Cancelled by user")
        logger.info(f"Job {job_id} cancelled by user")
        return True

    async def recover_stuck_jobs(self, timeout_minutes: int = 30) -> list[UUID]:
        stuck_jobs = await self.repo.find_stuck_jobs(timeout_minutes)
        recovered_ids = []

        for job in stuck_jobs:
            reason = f"Worker timeout after {timeout_minutes} minutes"
            if not job.can_retry:
                await self.repo.fail_job(job.id, reason)
                logger.warning(f"Stuck job {job.id} exhausted its attempts: {reason}")
                continue
            await self.repo.reset_stuck_job(job.id, reason)
            recovered_ids.append(job.id)
            logger.warning(f"Reset stuck job {job.id}: {reason}")

        return recovered_ids
