"""
Tests for SnapshotService.

Verifies:
- Snapshots are written under the organization prefix with a timestamped name
- The estimate pointer moves to the new blob and the superseded blob is removed
- A failed upload or a held lock leaves the previous pointer in place
"""

import json
import re

import pytest

from estimator.app.domains.snapshot.service import (
    SnapshotGenerationError,
    SnapshotService,
    build_snapshot_path,
)

PATH_PATTERN = re.compile(r"^org-7/estimates/\d+/structure_snapshot_\d{8}T\d{12}Z\.json$")


@pytest.fixture
def snapshot_service(structure_repository, mock_storage, mock_redis):
    return SnapshotService(structure_repository, mock_storage, redis_client=mock_redis)


class TestSnapshotPath:
    def test_shared_prefix_without_organization(self):
        from datetime import datetime, timezone

        from estimator.app.domains.estimate.models import Estimate

        estimate = Estimate(id=12, name="x")
        moment = datetime(2024, 3, 1, 8, 30, 5, 120, tzinfo=timezone.utc)
        assert (
            build_snapshot_path(estimate, moment)
            == "shared/estimates/12/structure_snapshot_20240301T083005000120Z.json"
        )


class TestGenerateSnapshot:
    @pytest.mark.asyncio
    async def test_publishes_snapshot(
        self, snapshot_service, make_section, mock_storage, estimate
    ):
        await make_section("Earthworks")

        path = await snapshot_service.generate_snapshot(estimate.id)

        assert PATH_PATTERN.match(path)
        assert estimate.structure_cache_path == path
        assert estimate.snapshot_generated_at is not None
        payload = json.loads(mock_storage.get(path))
        assert [s["name"] for s in payload["sections"]] == ["Earthworks"]
        assert payload["itemsWithoutSection"] == []

    @pytest.mark.asyncio
    async def test_current_snapshot_is_returned(self, snapshot_service, estimate):
        assert await snapshot_service.get_current_snapshot(estimate.id) is None

        await snapshot_service.generate_snapshot(estimate.id)

        body = await snapshot_service.get_current_snapshot(estimate.id)
        assert json.loads(body) == {"sections": [], "itemsWithoutSection": []}

    @pytest.mark.asyncio
    async def test_superseded_blob_deleted(self, snapshot_service, mock_storage, estimate):
        first = await snapshot_service.generate_snapshot(estimate.id)
        second = await snapshot_service.generate_snapshot(estimate.id)

        assert first != second
        assert mock_storage.keys == [second]
        assert first in mock_storage.deleted
        assert estimate.structure_cache_path == second

    @pytest.mark.asyncio
    async def test_superseded_blob_deleted_under_lock(
        self, snapshot_service, mock_storage, mock_redis, estimate
    ):
        lock_name = f"snapshot:{estimate.id}"
        first = await snapshot_service.generate_snapshot(estimate.id)

        deletions = []
        delete = mock_storage.delete

        def recording_delete(key):
            deletions.append((key, lock_name in mock_redis._locks))
            return delete(key)

        mock_storage.delete = recording_delete
        await snapshot_service.generate_snapshot(estimate.id)

        assert deletions == [(first, True)]
        assert mock_redis._locks == {}

    @pytest.mark.asyncio
    async def test_failed_delete_still_publishes(
        self, snapshot_service, mock_storage, mock_redis, estimate
    ):
        first = await snapshot_service.generate_snapshot(estimate.id)

        def failing_delete(key):
            raise OSError(f"simulated delete failure for {key}")

        mock_storage.delete = failing_delete
        second = await snapshot_service.generate_snapshot(estimate.id)

        assert estimate.structure_cache_path == second
        assert mock_storage.keys == sorted([first, second])
        assert mock_redis._locks == {}

    @pytest.mark.asyncio
    async def test_failed_upload_keeps_pointer(
        self, snapshot_service, mock_storage, structure_repository, estimate
    ):
        estimate_id = estimate.id
        first = await snapshot_service.generate_snapshot(estimate_id)

        mock_storage.fail_on_put = True
        with pytest.raises(SnapshotGenerationError) as exc_info:
            await snapshot_service.generate_snapshot(estimate_id)

        assert exc_info.value.retryable
        assert exc_info.value.to_dict()["details"]["estimate_id"] == estimate_id
        refreshed = await structure_repository.get_estimate(estimate_id)
        assert refreshed.structure_cache_path == first
        assert mock_storage.keys == [first]

    @pytest.mark.asyncio
    async def test_held_lock_discards_new_blob(
        self, snapshot_service, mock_storage, mock_redis, structure_repository, estimate
    ):
        estimate_id = estimate.id
        first = await snapshot_service.generate_snapshot(estimate_id)
        mock_redis.acquire_lock(f"snapshot:{estimate_id}")

        with pytest.raises(SnapshotGenerationError):
            await snapshot_service.generate_snapshot(estimate_id)

        refreshed = await structure_repository.get_estimate(estimate_id)
        assert refreshed.structure_cache_path == first
        assert mock_storage.keys == [first]

    @pytest.mark.asyncio
    async def test_lock_released_after_publish(self, snapshot_service, mock_redis, estimate):
        await snapshot_service.generate_snapshot(estimate.id)
        assert mock_redis._locks == {}

    @pytest.mark.asyncio
    async def test_missing_estimate_skipped(self, snapshot_service, mock_storage):
        assert await snapshot_service.generate_snapshot(98765) is None
        assert mock_storage.put_calls == []
