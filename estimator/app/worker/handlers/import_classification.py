from uuid import UUID

from estimator.app.config import get_settings
from estimator.app.domains.classification.pipeline import create_classification_pipeline
from estimator.app.domains.estimate.repository import EstimateStructureRepository
from estimator.app.domains.estimate_import.errors import (
    EstimateImportError,
    ImportCancelledError,
)
from estimator.app.domains.estimate_import.repository import ImportSessionRepository
from estimator.app.domains.estimate_import.service import EstimateImportService
from estimator.app.domains.job.repository import JobRepository
from estimator.app.domains.job.service import JobService
from estimator.app.infrastructure.errors import ImportAbortedError
from estimator.app.infrastructure.storage import StorageService
from estimator.app.logging_config import get_logger
from estimator.app.worker.handlers.base import HandlerContext, HandlerResult, JobHandler

logger = get_logger("worker.handlers.import_classification")


class ImportClassificationHandler(JobHandler):
    @property
    def name(self) -> str:
        return "ImportClassificationHandler"

    async def handle(self, context: HandlerContext) -> HandlerResult:
        job = context.job
        session_id_str = job.payload.get("import_session_id")
        estimate_id = job.payload.get("estimate_id")
        correlation_id = job.payload.get("correlation_id")

        logger.info(f"Import handler started for job {job.id}, import session {session_id_str}")

        if not session_id_str:
            return HandlerResult(success=False, error="Missing import_session_id in job payload")

        settings = get_settings()
        session_id = UUID(session_id_str)
        service = EstimateImportService(
            session_repo=ImportSessionRepository(context.session),
            structure_repo=EstimateStructureRepository(context.session),
            storage=StorageService(settings),
            job_service=JobService(JobRepository(context.session), settings.job_max_attempts),
            pipeline=create_classification_pipeline(settings, context.session),
            chunk_size=settings.classification_chunk_size,
        )

        try:
            stats = await service.run_import(session_id)
        except ImportCancelledError as e:
            await context.session.rollback()
            logger.info(e.message)
            return HandlerResult(
                success=True,
                data={"cancelled": True, "processed_rows": e.processed_rows},
            )
        except Exception as e:
            # Chunks already committed stay in place, so the job is not retried
            await context.session.rollback()
            reason = e.message if isinstance(e, EstimateImportError) else str(e)
            error = ImportAbortedError(
                import_session_id=session_id,
                estimate_id=estimate_id or 0,
                reason=reason,
                correlation_id=correlation_id,
            )
            logger.error(
                error.message,
                extra={"extra_data": error.to_log_dict()},
                exc_info=not isinstance(e, EstimateImportError),
            )
            await service.mark_failed(session_id, reason)
            return HandlerResult(success=False, error=reason, retryable=False)

        return HandlerResult(
            success=True,
            data=stats.model_dump(),
            follow_up_jobs=list(service.enqueued_jobs),
        )
