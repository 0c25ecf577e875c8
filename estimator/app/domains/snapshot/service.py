import json
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from estimator.app.domains.estimate.models import Estimate
from estimator.app.domains.estimate.repository import EstimateStructureRepository
from estimator.app.domains.snapshot.assembler import (
    AssembledSnapshot,
    SnapshotAssembler,
    snapshot_json_default,
)
from estimator.app.infrastructure.datetime_utils import compact_timestamp, utc_now
from estimator.app.infrastructure.errors import SnapshotFailureError
from estimator.app.infrastructure.redis import RedisClient
from estimator.app.infrastructure.storage import JSON_CONTENT_TYPE, StorageService
from estimator.app.logging_config import get_logger

logger = get_logger("app.domains.snapshot.service")

SNAPSHOT_LOCK_PREFIX = "snapshot"


class SnapshotGenerationError(Exception):
    """Snapshot could not be built or published; the previous pointer is untouched."""

    def __init__(
        self,
        estimate_id: int,
        reason: str,
        row_counts: Optional[dict[str, int]] = None,
        retryable: bool = True,
    ):
        self.estimate_id = estimate_id
        self.reason = reason
        self.row_counts = row_counts or {}
        self.retryable = retryable
        super().__init__(f"Snapshot generation failed for estimate {estimate_id}: {reason}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": str(self),
            "details": {
                "estimate_id": self.estimate_id,
                "reason": self.reason,
                "row_counts": self.row_counts,
                "retryable": self.retryable,
            },
        }


def build_snapshot_path(estimate: Estimate, moment: Optional[datetime] = None) -> str:
    return (
        f"{estimate.storage_prefix}/estimates/{estimate.id}/"
        f"structure_snapshot_{compact_timestamp(moment)}.json"
    )


def serialize_snapshot(snapshot: AssembledSnapshot) -> bytes:
    return json.dumps(
        snapshot.payload, ensure_ascii=False, default=snapshot_json_default
    ).encode("utf-8")


class SnapshotService:
    """
    Publishes structure snapshots to blob storage.

    Order of effects: the new blob is written first, the estimate's pointer is
    swapped and committed under a per-estimate lock, and the superseded blob
    is deleted before that lock is released. A failure at any step before the
    commit leaves the old pointer (and its blob) valid.
    """

    def __init__(
        self,
        repo: EstimateStructureRepository,
        storage: StorageService,
        redis_client: Optional[RedisClient] = None,
        lock_ttl_seconds: int = 60,
    ):
        self.repo = repo
        self.storage = storage
        self.redis_client = redis_client
        self.lock_ttl_seconds = lock_ttl_seconds
        self.assembler = SnapshotAssembler(repo)

    async def generate_snapshot(
        self, estimate_id: int, job_id: Optional[UUID] = None
    ) -> Optional[str]:
        """Build, upload and publish a snapshot; returns the new path.

        Returns None when the estimate no longer exists.
        """
        estimate = await self.repo.get_estimate(estimate_id)
        if estimate is None:
            logger.warning(f"Estimate {estimate_id} not found, skipping snapshot")
            return None

        logger.info(f"Starting snapshot generation for estimate {estimate_id}")

        snapshot: Optional[AssembledSnapshot] = None
        new_path: Optional[str] = None
        written = False
        try:
            snapshot = await self.assembler.assemble(estimate_id)
            data = serialize_snapshot(snapshot)
            new_path = build_snapshot_path(estimate)
            self.storage.put(new_path, data, content_type=JSON_CONTENT_TYPE)
            written = True

            await self._swap_pointer(estimate, new_path)
        except Exception as e:
            await self.repo.rollback()
            if written and new_path:
                self._discard_blob(new_path)
            row_counts = snapshot.row_counts() if snapshot else {}
            error = SnapshotFailureError(
                estimate_id=estimate_id,
                reason=str(e),
                section_count=row_counts.get("sections"),
                item_count=row_counts.get("items"),
                job_id=job_id,
            )
            logger.error(error.message, extra={"extra_data": error.to_log_dict()}, exc_info=True)
            raise SnapshotGenerationError(estimate_id, str(e), row_counts) from e

        logger.info(
            f"Snapshot generated for estimate {estimate_id} at {new_path} "
            f"({snapshot.row_counts()}, {len(data)} bytes)"
        )
        return new_path

    async def get_current_snapshot(self, estimate_id: int) -> Optional[bytes]:
        estimate = await self.repo.get_estimate(estimate_id)
        if estimate is None or not estimate.structure_cache_path:
            return None
        return self.storage.get(estimate.structure_cache_path)

    async def _swap_pointer(self, estimate: Estimate, new_path: str) -> None:
        lock_name = f"{SNAPSHOT_LOCK_PREFIX}:{estimate.id}"
        token: Optional[str] = None
        if self.redis_client is not None:
            token = self.redis_client.acquire_lock(lock_name, ttl_seconds=self.lock_ttl_seconds)
            if token is None:
                raise RuntimeError(f"Snapshot lock {lock_name} is held by another worker")

        try:
            # Another job may have swapped the pointer since this one started
            await self.repo.session.refresh(estimate)
            old_path = estimate.structure_cache_path
            estimate.structure_cache_path = new_path
            estimate.snapshot_generated_at = utc_now()
            await self.repo.commit()
            if old_path and old_path != new_path:
                self._delete_superseded(old_path)
        finally:
            if token is not None:
                self.redis_client.release_lock(lock_name, token)

    def _discard_blob(self, path: str) -> None:
        try:
            self.storage.delete(path)
        except Exception as e:
            logger.warning(f"Failed to remove unpublished snapshot {path}: {e}")

    def _delete_superseded(self, old_path: str) -> None:
        try:
            if self.storage.exists(old_path):
                self.storage.delete(old_path)
                logger.debug(f"Deleted superseded snapshot {old_path}")
        except Exception as e:
            logger.warning(f"Failed to delete superseded snapshot {old_path}: {e}")
