from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field

from estimator.app.api.deps import (
    announce_jobs,
    get_redis,
    get_section_service,
    get_snapshot_service,
)
from estimator.app.domains.estimate.errors import (
    EstimateNotFoundError,
    EstimateStructureError,
    SectionNotFoundError,
    StructureInvariantError,
)
from estimator.app.domains.estimate.schemas import (
    EstimateCreate,
    EstimateResponse,
    ItemCreate,
    ItemResponse,
    NumberingReport,
    SectionCreate,
    SectionResponse,
    SectionUpdate,
)
from estimator.app.domains.estimate.service import EstimateSectionService
from estimator.app.domains.job.schemas import JobResponse, SnapshotJobCreate
from estimator.app.domains.snapshot.service import SnapshotService
from estimator.app.infrastructure.errors import StructureViolationError
from estimator.app.infrastructure.redis import RedisClient
from estimator.app.logging_config import get_logger

logger = get_logger("app.api.estimates")

router = APIRouter()
SectionServiceDep = Annotated[EstimateSectionService, Depends(get_section_service)]
SnapshotServiceDep = Annotated[SnapshotService, Depends(get_snapshot_service)]
RedisDep = Annotated[RedisClient, Depends(get_redis)]


class SectionMoveRequest(BaseModel):
    parent_section_id: Optional[int] = Field(None, description="New parent, null for root")
    sort_order: Optional[int] = Field(None, ge=0, description="Target position among siblings")


class RenumberResponse(BaseModel):
    estimate_id: int
    changed_sections: int


def _to_http_error(e: EstimateStructureError) -> HTTPException:
    if isinstance(e, (EstimateNotFoundError, SectionNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    if isinstance(e, StructureInvariantError):
        violation = StructureViolationError(
            estimate_id=e.estimate_id, reason=e.reason, section_id=e.section_id
        )
        logger.warning(violation.message, extra={"extra_data": violation.to_log_dict()})
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.to_dict())
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)


async def _commit(service: EstimateSectionService, redis_client: RedisClient) -> None:
    await service.repo.commit()
    announce_jobs(redis_client, service.enqueued_jobs)


@router.post("", response_model=EstimateResponse, status_code=status.HTTP_201_CREATED)
async def create_estimate(data: EstimateCreate, service: SectionServiceDep) -> EstimateResponse:
    estimate = await service.create_estimate(data)
    await service.repo.commit()
    await service.repo.session.refresh(estimate)
    return EstimateResponse.model_validate(estimate)


@router.get("/{estimate_id}", response_model=EstimateResponse)
async def get_estimate(estimate_id: int, service: SectionServiceDep) -> EstimateResponse:
    try:
        estimate = await service.get_estimate(estimate_id)
    except EstimateStructureError as e:
        raise _to_http_error(e)
    return EstimateResponse.model_validate(estimate)


@router.get("/{estimate_id}/sections", response_model=list[SectionResponse])
async def list_sections(estimate_id: int, service: SectionServiceDep) -> list[SectionResponse]:
    """List every section of the estimate ordered by sibling position."""
    try:
        sections = await service.list_sections(estimate_id)
    except EstimateStructureError as e:
        raise _to_http_error(e)
    return [SectionResponse.model_validate(s) for s in sections]


@router.post(
    "/{estimate_id}/sections",
    response_model=SectionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_section(
    estimate_id: int,
    data: SectionCreate,
    service: SectionServiceDep,
    redis_client: RedisDep,
) -> SectionResponse:
    """
    Create a section.

    Without ``sort_order`` the section is appended after its last sibling.
    With an explicit ``sort_order`` the section is inserted at that position
    and the siblings after it (and their subtrees) are renumbered.
    """
    try:
        section = await service.create_section(estimate_id, data)
    except EstimateStructureError as e:
        await service.repo.rollback()
        raise _to_http_error(e)
    await _commit(service, redis_client)
    await service.repo.session.refresh(section)
    return SectionResponse.model_validate(section)


@router.patch("/{estimate_id}/sections/{section_id}", response_model=SectionResponse)
async def update_section(
    estimate_id: int,
    section_id: int,
    data: SectionUpdate,
    service: SectionServiceDep,
    redis_client: RedisDep,
) -> SectionResponse:
    try:
        section = await service.update_section(estimate_id, section_id, data)
    except EstimateStructureError as e:
        await service.repo.rollback()
        raise _to_http_error(e)
    await _commit(service, redis_client)
    await service.repo.session.refresh(section)
    return SectionResponse.model_validate(section)


@router.post("/{estimate_id}/sections/{section_id}/move", response_model=SectionResponse)
async def move_section(
    estimate_id: int,
    section_id: int,
    request: SectionMoveRequest,
    service: SectionServiceDep,
    redis_client: RedisDep,
) -> SectionResponse:
    """
    Move a section under a new parent and/or to a new position.

    Moving a section under itself or one of its descendants is rejected with 409.
    """
    try:
        section = await service.move_section(
            estimate_id, section_id, request.parent_section_id, request.sort_order
        )
    except EstimateStructureError as e:
        await service.repo.rollback()
        raise _to_http_error(e)
    await _commit(service, redis_client)
    await service.repo.session.refresh(section)
    return SectionResponse.model_validate(section)


@router.delete("/{estimate_id}/sections/{section_id}", status_code=status.HTTP_200_OK)
async def delete_section(
    estimate_id: int,
    section_id: int,
    service: SectionServiceDep,
    redis_client: RedisDep,
) -> dict:
    try:
        deleted = await service.delete_section(estimate_id, section_id)
    except EstimateStructureError as e:
        await service.repo.rollback()
        raise _to_http_error(e)
    await _commit(service, redis_client)
    return {"message": f"Section {section_id} deleted", "deleted_sections": deleted}


@router.post("/{estimate_id}/renumber", response_model=RenumberResponse)
async def renumber_estimate(
    estimate_id: int,
    service: SectionServiceDep,
    redis_client: RedisDep,
) -> RenumberResponse:
    """Rebuild every section number of the estimate from the stored sort orders."""
    try:
        changed = await service.renumber(estimate_id)
    except EstimateStructureError as e:
        await service.repo.rollback()
        raise _to_http_error(e)
    await _commit(service, redis_client)
    return RenumberResponse(estimate_id=estimate_id, changed_sections=changed)


@router.get("/{estimate_id}/numbering", response_model=NumberingReport)
async def validate_numbering(estimate_id: int, service: SectionServiceDep) -> NumberingReport:
    try:
        return await service.validate_numbering(estimate_id)
    except EstimateStructureError as e:
        raise _to_http_error(e)


@router.post(
    "/{estimate_id}/items",
    response_model=ItemResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_item(
    estimate_id: int,
    data: ItemCreate,
    service: SectionServiceDep,
    redis_client: RedisDep,
) -> ItemResponse:
    try:
        item = await service.create_item(estimate_id, data)
    except EstimateStructureError as e:
        await service.repo.rollback()
        raise _to_http_error(e)
    await _commit(service, redis_client)
    await service.repo.session.refresh(item)
    return ItemResponse.model_validate(item)


@router.post(
    "/{estimate_id}/snapshot",
    response_model=JobResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def trigger_snapshot(
    estimate_id: int,
    service: SectionServiceDep,
    redis_client: RedisDep,
) -> JobResponse:
    """Queue snapshot generation; an already pending snapshot job is returned as is."""
    if service.job_service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Job queue is not configured",
        )
    try:
        await service.get_estimate(estimate_id)
    except EstimateStructureError as e:
        raise _to_http_error(e)

    job = await service.job_service.enqueue_snapshot(
        SnapshotJobCreate(estimate_id=estimate_id, reason="manual")
    )
    await service.repo.commit()
    await service.repo.session.refresh(job)
    announce_jobs(redis_client, [job])
    return JobResponse.model_validate(job)


@router.get("/{estimate_id}/snapshot")
async def get_current_snapshot(estimate_id: int, service: SnapshotServiceDep) -> Response:
    """Return the last published structure snapshot as stored."""
    data = await service.get_current_snapshot(estimate_id)
    if data is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No snapshot available for estimate {estimate_id}",
        )
    return Response(content=data, media_type="application/json")
