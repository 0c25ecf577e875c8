from typing import Annotated, AsyncGenerator, Iterable

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from estimator.app.config import Settings, get_settings
from estimator.app.domains.estimate.repository import EstimateStructureRepository
from estimator.app.domains.estimate.service import EstimateSectionService
from estimator.app.domains.estimate_import.repository import ImportSessionRepository
from estimator.app.domains.estimate_import.service import EstimateImportService
from estimator.app.domains.job.models import Job
from estimator.app.domains.job.repository import JobRepository
from estimator.app.domains.job.service import JobService
from estimator.app.domains.snapshot.service import SnapshotService
from estimator.app.infrastructure.database import get_db_session
from estimator.app.infrastructure.redis import RedisClient, get_redis_client
from estimator.app.infrastructure.storage import StorageService


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async for session in get_db_session():
        yield session


DbSession = Annotated[AsyncSession, Depends(get_db)]


def get_app_settings() -> Settings:
    return get_settings()


def get_storage_service(
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> StorageService:
    return StorageService(settings)


def get_redis(settings: Annotated[Settings, Depends(get_app_settings)]) -> RedisClient:
    return get_redis_client(settings.redis_url)


def get_job_repository(session: DbSession) -> JobRepository:
    return JobRepository(session)


def get_job_service(
    repo: Annotated[JobRepository, Depends(get_job_repository)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> JobService:
    return JobService(repo, settings.job_max_attempts)


def get_structure_repository(session: DbSession) -> EstimateStructureRepository:
    return EstimateStructureRepository(session)


def get_section_service(
    repo: Annotated[EstimateStructureRepository, Depends(get_structure_repository)],
    job_service: Annotated[JobService, Depends(get_job_service)],
) -> EstimateSectionService:
    return EstimateSectionService(repo, job_service)


def get_import_service(
    session: DbSession,
    structure_repo: Annotated[EstimateStructureRepository, Depends(get_structure_repository)],
    storage: Annotated[StorageService, Depends(get_storage_service)],
    job_service: Annotated[JobService, Depends(get_job_service)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> EstimateImportService:
    return EstimateImportService(
        session_repo=ImportSessionRepository(session),
        structure_repo=structure_repo,
        storage=storage,
        job_service=job_service,
        chunk_size=settings.classification_chunk_size,
    )


def get_snapshot_service(
    repo: Annotated[EstimateStructureRepository, Depends(get_structure_repository)],
    storage: Annotated[StorageService, Depends(get_storage_service)],
    redis_client: Annotated[RedisClient, Depends(get_redis)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> SnapshotService:
    return SnapshotService(
        repo, storage, redis_client, lock_ttl_seconds=settings.snapshot_lock_ttl_seconds
    )


def announce_jobs(redis_client: RedisClient, jobs: Iterable[Job]) -> None:
    """Publish committed jobs to workers; delivery failures are logged by the client."""
    for job in jobs:
        redis_client.notify_job_created(job.id, job.job_type.value)
