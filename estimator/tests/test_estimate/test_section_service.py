"""
Tests for EstimateSectionService.

Verifies:
- Structural mutations queue a single pending snapshot job per estimate
- Deleting a section removes its subtree together with the items in it
- Sections of another estimate are not addressable
- Item creation assigns positions and validates references
"""

from decimal import Decimal

import pytest

from estimator.app.domains.classification.schemas import UNCLASSIFIED_SOURCE, ItemLabel
from estimator.app.domains.estimate.errors import (
    EstimateNotFoundError,
    SectionNotFoundError,
    StructureInvariantError,
)
from estimator.app.domains.estimate.models import (
    Estimate,
    EstimateItem,
    EstimateItemResource,
)
from estimator.app.domains.estimate.schemas import (
    EstimateCreate,
    ItemCreate,
    SectionCreate,
    SectionUpdate,
)
from estimator.app.domains.job.models import JobStatus, JobType


class TestEstimates:
    @pytest.mark.asyncio
    async def test_create_and_get_estimate(self, section_service):
        created = await section_service.create_estimate(
            EstimateCreate(name="Warehouse", organization_id=3)
        )
        fetched = await section_service.get_estimate(created.id)
        assert fetched.name == "Warehouse"
        assert fetched.storage_prefix == "org-3"
        assert fetched.structure_cache_path is None

    @pytest.mark.asyncio
    async def test_unknown_estimate(self, section_service):
        with pytest.raises(EstimateNotFoundError):
            await section_service.get_estimate(424242)

        with pytest.raises(EstimateNotFoundError):
            await section_service.create_section(424242, SectionCreate(name="Earthworks"))


class TestSnapshotQueueing:
    @pytest.mark.asyncio
    async def test_mutations_coalesce_into_one_pending_job(
        self, make_section, section_service, job_service, estimate
    ):
        a = await make_section("Earthworks")
        await make_section("Foundations")
        await section_service.update_section(
            estimate.id, a.id, SectionUpdate(name="Earthworks and backfill")
        )

        jobs = await job_service.list_jobs(
            status=JobStatus.PENDING,
            job_type=JobType.GENERATE_SNAPSHOT,
            estimate_id=estimate.id,
        )
        assert len(jobs) == 1
        assert jobs[0].payload["reason"] == "section_created"
        assert [job.id for job in section_service.enqueued_jobs] == [jobs[0].id]

    @pytest.mark.asyncio
    async def test_new_job_after_previous_one_started(
        self, make_section, section_service, job_service, estimate
    ):
        await make_section("Earthworks")
        first = await job_service.claim_job("worker-1", [JobType.GENERATE_SNAPSHOT])
        assert first is not None

        await make_section("Foundations")

        pending = await job_service.list_jobs(
            status=JobStatus.PENDING, job_type=JobType.GENERATE_SNAPSHOT
        )
        assert len(pending) == 1
        assert pending[0].id != first.id

    @pytest.mark.asyncio
    async def test_noop_update_queues_nothing(self, structure_repository, job_service, estimate):
        from estimator.app.domains.estimate.service import EstimateSectionService

        plain = EstimateSectionService(structure_repository)
        section = await plain.create_section(estimate.id, SectionCreate(name="Roofing"))

        service = EstimateSectionService(structure_repository, job_service)
        await service.update_section(estimate.id, section.id, SectionUpdate(name="Roofing"))
        await service.update_section(estimate.id, section.id, SectionUpdate(sort_order=0))

        assert service.enqueued_jobs == []
        assert await job_service.list_jobs() == []


class TestSectionAccess:
    @pytest.mark.asyncio
    async def test_rename_keeps_position(self, make_section, section_service, estimate):
        await make_section("A")
        b = await make_section("B")

        updated = await section_service.update_section(
            estimate.id, b.id, SectionUpdate(name="B renamed")
        )

        assert updated.name == "B renamed"
        assert (updated.section_number, updated.sort_order) == ("2", 1)

    @pytest.mark.asyncio
    async def test_section_of_other_estimate_not_found(
        self, make_section, section_service, structure_repository
    ):
        section = await make_section("A")
        other = await structure_repository.create_estimate(Estimate(name="Other"))

        with pytest.raises(SectionNotFoundError):
            await section_service.get_section(other.id, section.id)

        with pytest.raises(SectionNotFoundError):
            await section_service.delete_section(other.id, section.id)

    @pytest.mark.asyncio
    async def test_parent_from_other_estimate_rejected(
        self, make_section, section_service, structure_repository
    ):
        section = await make_section("A")
        other = await structure_repository.create_estimate(Estimate(name="Other"))

        with pytest.raises(StructureInvariantError):
            await section_service.create_section(
                other.id, SectionCreate(name="X", parent_section_id=section.id)
            )

    @pytest.mark.asyncio
    async def test_list_children(self, make_section, section_service, estimate):
        a = await make_section("A")
        await make_section("A2", parent=a)
        await make_section("A1", parent=a, sort_order=0)

        children = await section_service.list_children(estimate.id, a.id)
        assert [s.name for s in children] == ["A1", "A2"]


class TestDeleteWithItems:
    @pytest.mark.asyncio
    async def test_subtree_items_and_satellites_removed(
        self, make_section, section_service, structure_repository, estimate
    ):
        keep = await make_section("Keep")
        drop = await make_section("Drop")
        nested = await make_section("Nested", parent=drop)

        kept_item = await section_service.create_item(
            estimate.id, ItemCreate(name="Excavation", section_id=keep.id)
        )
        parent_item = await section_service.create_item(
            estimate.id, ItemCreate(name="Concrete works", section_id=nested.id)
        )
        child_item = await section_service.create_item(
            estimate.id,
            ItemCreate(name="Concrete B25", parent_item_id=parent_item.id),
        )
        await structure_repository.add_satellites(
            [
                EstimateItemResource(
                    item_id=parent_item.id,
                    resource_type="material",
                    name="Cement",
                    quantity=Decimal("1.5"),
                )
            ]
        )

        deleted = await section_service.delete_section(estimate.id, drop.id)

        assert deleted == 2
        assert await structure_repository.get_item(kept_item.id) is not None
        assert await structure_repository.get_item(parent_item.id) is None
        assert await structure_repository.get_item(child_item.id) is None
        assert await structure_repository.fetch_resource_rows([parent_item.id]) == []


class TestItems:
    @pytest.mark.asyncio
    async def test_positions_are_sequential(self, make_section, section_service, estimate):
        section = await make_section("A")
        first = await section_service.create_item(
            estimate.id, ItemCreate(name="Item 1", section_id=section.id)
        )
        second = await section_service.create_item(estimate.id, ItemCreate(name="Item 2"))
        explicit = await section_service.create_item(
            estimate.id, ItemCreate(name="Item 10", position_number=10)
        )
        after = await section_service.create_item(estimate.id, ItemCreate(name="Item 11"))

        assert [first.position_number, second.position_number] == [1, 2]
        assert explicit.position_number == 10
        assert after.position_number == 11

    @pytest.mark.asyncio
    async def test_default_classification_needs_review(self, section_service, estimate):
        item = await section_service.create_item(estimate.id, ItemCreate(name="Unknown row"))
        assert item.classification_label == ItemLabel.WORK.value
        assert item.classification_source == UNCLASSIFIED_SOURCE
        assert item.needs_review

    @pytest.mark.asyncio
    async def test_explicit_classification_kept(self, section_service, estimate):
        item = await section_service.create_item(
            estimate.id,
            ItemCreate(
                name="Excavator 0.65 m3",
                code="91.01.01-035",
                classification_label=ItemLabel.EQUIPMENT,
                classification_confidence=1.0,
                classification_source="regex_strict",
            ),
        )
        assert isinstance(item, EstimateItem)
        assert item.classification_label == "equipment"
        assert not item.needs_review

    @pytest.mark.asyncio
    async def test_unknown_references_rejected(self, section_service, estimate):
        with pytest.raises(SectionNotFoundError):
            await section_service.create_item(
                estimate.id, ItemCreate(name="Item", section_id=999)
            )
        with pytest.raises(StructureInvariantError):
            await section_service.create_item(
                estimate.id, ItemCreate(name="Item", parent_item_id=999)
            )
