from estimator.app.config import get_settings
from estimator.app.domains.estimate.repository import EstimateStructureRepository
from estimator.app.domains.snapshot.service import SnapshotGenerationError, SnapshotService
from estimator.app.infrastructure.storage import StorageService
from estimator.app.logging_config import get_logger
from estimator.app.worker.handlers.base import HandlerContext, HandlerResult, JobHandler

logger = get_logger("worker.handlers.snapshot")


class SnapshotHandler(JobHandler):
    @property
    def name(self) -> str:
        return "SnapshotHandler"

    async def handle(self, context: HandlerContext) -> HandlerResult:
        job = context.job
        estimate_id = job.estimate_id or job.payload.get("estimate_id")

        if not estimate_id:
            return HandlerResult(success=False, error="Missing estimate_id in job payload")

        settings = get_settings()
        service = SnapshotService(
            repo=EstimateStructureRepository(context.session),
            storage=StorageService(settings),
            redis_client=context.redis_client,
            lock_ttl_seconds=settings.snapshot_lock_ttl_seconds,
        )

        try:
            path = await service.generate_snapshot(int(estimate_id), job_id=job.id)
        except SnapshotGenerationError as e:
            return HandlerResult(success=False, error=str(e), retryable=e.retryable)

        if path is None:
            return HandlerResult(
                success=True,
                data={"estimate_id": estimate_id, "skipped": "estimate not found"},
            )
        return HandlerResult(success=True, data={"estimate_id": estimate_id, "path": path})
