from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from estimator.app.api.deps import announce_jobs, get_import_service, get_redis
from estimator.app.domains.estimate.errors import EstimateNotFoundError
from estimator.app.domains.estimate_import.errors import (
    ImportSessionNotFoundError,
    WorkbookFormatError,
)
from estimator.app.domains.estimate_import.schemas import (
    ImportSessionResponse,
    ImportStartResponse,
)
from estimator.app.domains.estimate_import.service import EstimateImportService
from estimator.app.infrastructure.redis import RedisClient

router = APIRouter()
ImportServiceDep = Annotated[EstimateImportService, Depends(get_import_service)]
RedisDep = Annotated[RedisClient, Depends(get_redis)]


@router.post(
    "/estimates/{estimate_id}/imports",
    response_model=ImportStartResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_import(
    estimate_id: int,
    service: ImportServiceDep,
    redis_client: RedisDep,
    file: UploadFile = File(
        ..., description="Estimate workbook (.xlsx) or XML export (.xml, .gsfx) to import"
    ),
) -> ImportStartResponse:
    """
    Upload a workbook or XML export and queue its import.

    Rows are read, classified and written by a background job; poll
    ``GET /imports/{session_id}`` for progress.
    """
    filename = file.filename or "estimate.xlsx"
    content = await file.read()

    try:
        import_session, job = await service.start_import(estimate_id, filename, content)
    except EstimateNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except WorkbookFormatError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

    await service.session_repo.session.commit()
    await service.session_repo.session.refresh(import_session)
    announce_jobs(redis_client, service.enqueued_jobs)

    return ImportStartResponse(
        session=ImportSessionResponse.model_validate(import_session),
        job_id=job.id,
    )


@router.get("/estimates/{estimate_id}/imports", response_model=list[ImportSessionResponse])
async def list_imports(estimate_id: int, service: ImportServiceDep) -> list[ImportSessionResponse]:
    sessions = await service.list_sessions(estimate_id)
    return [ImportSessionResponse.model_validate(s) for s in sessions]


@router.get("/imports/{session_id}", response_model=ImportSessionResponse)
async def get_import(session_id: UUID, service: ImportServiceDep) -> ImportSessionResponse:
    try:
        import_session = await service.get_session(session_id)
    except ImportSessionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    return ImportSessionResponse.model_validate(import_session)


@router.post("/imports/{session_id}/cancel", response_model=ImportSessionResponse)
async def cancel_import(session_id: UUID, service: ImportServiceDep) -> ImportSessionResponse:
    """
    Cancel an import.

    The running job stops before its next chunk; rows already written are kept.
    Finished sessions are returned unchanged.
    """
    try:
        import_session = await service.cancel_import(session_id)
    except ImportSessionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    await service.session_repo.session.commit()
    await service.session_repo.session.refresh(import_session)
    return ImportSessionResponse.model_validate(import_session)
