from estimator.app.domains.job.models import JobType
from estimator.app.worker.handlers.base import HandlerContext, HandlerResult, JobHandler
from estimator.app.worker.handlers.import_classification import ImportClassificationHandler
from estimator.app.worker.handlers.snapshot import SnapshotHandler

_handlers: dict[JobType, JobHandler] = {
    JobType.IMPORT_CLASSIFY: ImportClassificationHandler(),
    JobType.GENERATE_SNAPSHOT: SnapshotHandler(),
}


def get_handler_for_job_type(job_type: JobType) -> JobHandler:
    handler = _handlers.get(job_type)
    if not handler:
        raise ValueError(f"No handler registered for job type: {job_type}")
    return handler


__all__ = [
    "get_handler_for_job_type",
    "JobHandler",
    "HandlerContext",
    "HandlerResult",
]
