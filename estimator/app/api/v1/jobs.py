from typing import Optional, Annotated
from uuid import UUID

from fastapi import APIRouter, HTTPException, status, Depends, Query

from estimator.app.domains.job.models import JobStatus, JobType
from estimator.app.domains.job.schemas import JobResponse, JobCountResponse
from estimator.app.domains.job.service import JobService
from estimator.app.api.deps import get_job_service

router = APIRouter()
JobServiceDep = Annotated[JobService, Depends(get_job_service)]


@router.get("", response_model=list[JobResponse])
async def list_jobs(
    service: JobServiceDep,
    status_filter: Optional[JobStatus] = Query(None, alias="status"),
    job_type: Optional[JobType] = Query(None, alias="type"),
    estimate_id: Optional[int] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
) -> list[JobResponse]:
    """
    List jobs with optional filtering.

    Filter by:
    - status: PENDING, RUNNING, COMPLETED, FAILED
    - type: IMPORT_CLASSIFY, GENERATE_SNAPSHOT
    - estimate_id: jobs of a single estimate
    """
    jobs = await service.list_jobs(
        status=status_filter,
        job_type=job_type,
        estimate_id=estimate_id,
        skip=skip,
        limit=limit,
    )
    return [JobResponse.model_validate(j) for j in jobs]


@router.get("/counts", response_model=JobCountResponse)
async def get_job_counts(service: JobServiceDep) -> JobCountResponse:
    """Get count of jobs by status."""
    counts = await service.get_job_counts()
    return JobCountResponse(
        pending=counts.get(JobStatus.PENDING, 0),
        running=counts.get(JobStatus.RUNNING, 0),
        completed=counts.get(JobStatus.COMPLETED, 0),
        failed=counts.get(JobStatus.FAILED, 0),
    )


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: UUID,
    service: JobServiceDep,
) -> JobResponse:
    """Get full job details including payload and result."""
    job = await service.get_job(job_id)
    if not job:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {job_id} not found",
        )
    return JobResponse.model_validate(job)


@router.post("/{job_id}/cancel", status_code=status.HTTP_200_OK)
async def cancel_job(
    job_id: UUID,
    service: JobServiceDep,
) -> dict:
    """
    Cancel a job.

    Only jobs in PENDING or RUNNING state can be cancelled.
    Completed or already failed jobs cannot be cancelled.
    """
    cancelled = await service.cancel_job(job_id)
    if not cancelled:
        job = await service.get_job(job_id)
        if not job:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Job {job_id} not found",
            )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Job {job_id} cannot be cancelled (status: {job.status.value})",
        )
    await service.repo.session.commit()
    return {"message": f"Job {job_id} cancelled"}
