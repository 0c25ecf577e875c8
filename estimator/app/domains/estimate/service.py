from typing import Optional, Sequence

from estimator.app.domains.classification.schemas import UNCLASSIFIED_SOURCE
from estimator.app.domains.estimate.errors import (
    EstimateNotFoundError,
    SectionNotFoundError,
    StructureInvariantError,
)
from estimator.app.domains.estimate.models import Estimate, EstimateItem, EstimateSection
from estimator.app.domains.estimate.numbering import SectionNumberingEngine
from estimator.app.domains.estimate.repository import EstimateStructureRepository
from estimator.app.domains.estimate.schemas import (
    EstimateCreate,
    ItemCreate,
    NumberingReport,
    SectionCreate,
    SectionUpdate,
)
from estimator.app.domains.job.models import Job
from estimator.app.domains.job.schemas import SnapshotJobCreate
from estimator.app.domains.job.service import JobService
from estimator.app.logging_config import get_logger

logger = get_logger("app.domains.estimate.service")


class EstimateSectionService:
    """
    Mutations of an estimate's section tree and line items.

    Every structural mutation runs the numbering hooks in the caller's
    transaction and queues a snapshot job; nothing here commits. Jobs queued
    during the unit of work are collected in ``enqueued_jobs`` so the caller
    can announce them once the transaction is committed.
    """

    def __init__(
        self,
        repo: EstimateStructureRepository,
        job_service: Optional[JobService] = None,
    ):
        self.repo = repo
        self.numbering = SectionNumberingEngine(repo)
        self.job_service = job_service
        self.enqueued_jobs: list[Job] = []

    async def create_estimate(self, data: EstimateCreate) -> Estimate:
        estimate = Estimate(name=data.name, organization_id=data.organization_id)
        created = await self.repo.create_estimate(estimate)
        logger.info(f"Created estimate {created.id}")
        return created

    async def get_estimate(self, estimate_id: int) -> Estimate:
        estimate = await self.repo.get_estimate(estimate_id)
        if estimate is None:
            raise EstimateNotFoundError(estimate_id)
        return estimate

    async def list_sections(self, estimate_id: int) -> Sequence[EstimateSection]:
        await self.get_estimate(estimate_id)
        return await self.repo.list_sections_by_estimate(estimate_id)

    async def list_children(
        self, estimate_id: int, parent_section_id: Optional[int]
    ) -> Sequence[EstimateSection]:
        return await self.repo.list_sections_by_parent(estimate_id, parent_section_id)

    async def get_section(self, estimate_id: int, section_id: int) -> EstimateSection:
        section = await self.repo.get_section(section_id)
        if section is None or section.estimate_id != estimate_id:
            raise SectionNotFoundError(section_id, estimate_id)
        return section

    async def create_section(self, estimate_id: int, data: SectionCreate) -> EstimateSection:
        await self.get_estimate(estimate_id)

        section = EstimateSection(
            estimate_id=estimate_id,
            parent_section_id=data.parent_section_id,
            name=data.name,
            sort_order=data.sort_order,
        )
        await self.numbering.on_creating(section)
        created = await self.repo.create_section(section)
        await self.numbering.on_created(created)

        logger.info(
            f"Created section {created.id} '{created.section_number}' in estimate {estimate_id}"
        )
        await self._enqueue_snapshot(estimate_id, "section_created")
        return created

    async def update_section(
        self, estimate_id: int, section_id: int, data: SectionUpdate
    ) -> EstimateSection:
        section = await self.get_section(estimate_id, section_id)

        renamed = data.name is not None and data.name != section.name
        if renamed:
            section.name = data.name

        new_parent_id = (
            data.parent_section_id
            if "parent_section_id" in data.model_fields_set
            else section.parent_section_id
        )
        change = await self.numbering.on_updating(section, new_parent_id, data.sort_order)

        if change is not None:
            section.parent_section_id = change.new_parent_id
            section.sort_order = change.new_sort_order
            await self.repo.flush()
            await self.numbering.on_updated(section, change)
            await self._enqueue_snapshot(estimate_id, "section_moved")
        elif renamed:
            await self.repo.flush()
            await self._enqueue_snapshot(estimate_id, "section_renamed")

        return section

    async def move_section(
        self,
        estimate_id: int,
        section_id: int,
        new_parent_id: Optional[int],
        sort_order: Optional[int] = None,
    ) -> EstimateSection:
        data = SectionUpdate(parent_section_id=new_parent_id, sort_order=sort_order)
        return await self.update_section(estimate_id, section_id, data)

    async def delete_section(self, estimate_id: int, section_id: int) -> int:
        """Delete a section with its whole subtree; returns the number of sections removed."""
        section = await self.get_section(estimate_id, section_id)
        parent_id = section.parent_section_id

        sections = await self.repo.list_sections_by_estimate(estimate_id)
        children: dict[int, list[int]] = {}
        for candidate in sections:
            if candidate.parent_section_id is not None:
                children.setdefault(candidate.parent_section_id, []).append(candidate.id)

        subtree: set[int] = set()
        frontier = [section.id]
        while frontier:
            current = frontier.pop()
            if current in subtree:
                continue
            subtree.add(current)
            frontier.extend(children.get(current, []))

        deleted = await self.repo.delete_sections(subtree)
        await self.numbering.on_deleted(estimate_id, parent_id)

        logger.info(
            f"Deleted section {section_id} with {len(subtree) - 1} descendants "
            f"from estimate {estimate_id}"
        )
        await self._enqueue_snapshot(estimate_id, "section_deleted")
        return deleted

    async def create_item(self, estimate_id: int, data: ItemCreate) -> EstimateItem:
        await self.get_estimate(estimate_id)
        if data.section_id is not None:
            await self.get_section(estimate_id, data.section_id)
        if data.parent_item_id is not None:
            parent = await self.repo.get_item(data.parent_item_id)
            if parent is None or parent.estimate_id != estimate_id:
                raise StructureInvariantError(
                    estimate_id, f"parent item {data.parent_item_id} does not exist"
                )

        position = data.position_number or await self.repo.next_position_number(estimate_id)
        item = EstimateItem(
            estimate_id=estimate_id,
            section_id=data.section_id,
            parent_item_id=data.parent_item_id,
            position_number=position,
            code=data.code,
            name=data.name,
            unit=data.unit,
            quantity=data.quantity,
            unit_price=data.unit_price,
            classification_label=data.classification_label.value,
            classification_confidence=data.classification_confidence,
            classification_source=data.classification_source or UNCLASSIFIED_SOURCE,
        )
        created = await self.repo.create_item(item)
        await self._enqueue_snapshot(estimate_id, "item_created")
        return created

    async def renumber(self, estimate_id: int) -> int:
        await self.get_estimate(estimate_id)
        changed = await self.numbering.renumber_estimate(estimate_id)
        if changed:
            await self._enqueue_snapshot(estimate_id, "renumbered")
        return changed

    async def validate_numbering(self, estimate_id: int) -> NumberingReport:
        await self.get_estimate(estimate_id)
        return await self.numbering.validate_numbering(estimate_id)

    async def _enqueue_snapshot(self, estimate_id: int, reason: str) -> Optional[Job]:
        if self.job_service is None:
            return None
        job = await self.job_service.enqueue_snapshot(
            SnapshotJobCreate(estimate_id=estimate_id, reason=reason)
        )
        if all(existing.id != job.id for existing in self.enqueued_jobs):
            self.enqueued_jobs.append(job)
        return job
