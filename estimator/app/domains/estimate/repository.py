from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from estimator.app.domains.estimate.models import (
    Estimate,
    EstimateItem,
    EstimateItemResource,
    EstimateItemTotal,
    EstimateItemWork,
    EstimateSection,
    MeasurementUnit,
    WorkType,
)

Row = dict[str, Any]


class EstimateStructureRepository:
    """Store for an estimate's sections, line items and their satellite rows.

    ORM instances are returned for the mutation paths; the ``fetch_*`` methods
    return plain mappings for bulk read paths.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_estimate(self, estimate_id: int) -> Optional[Estimate]:
        stmt = select(Estimate).where(Estimate.id == estimate_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create_estimate(self, estimate: Estimate) -> Estimate:
        self.session.add(estimate)
        await self.session.flush()
        return estimate

    # Sections

    async def create_section(self, section: EstimateSection) -> EstimateSection:
        self.session.add(section)
        await self.session.flush()
        return section

    async def get_section(self, section_id: int) -> Optional[EstimateSection]:
        stmt = select(EstimateSection).where(EstimateSection.id == section_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_sections_by_estimate(self, estimate_id: int) -> Sequence[EstimateSection]:
        stmt = (
            select(EstimateSection)
            .where(EstimateSection.estimate_id == estimate_id)
            .order_by(EstimateSection.sort_order, EstimateSection.id)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def list_sections_by_parent(
        self, estimate_id: int, parent_section_id: Optional[int]
    ) -> Sequence[EstimateSection]:
        stmt = (
            select(EstimateSection)
            .where(EstimateSection.estimate_id == estimate_id)
            .where(self._parent_clause(parent_section_id))
            .order_by(EstimateSection.sort_order, EstimateSection.id)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def max_sort_order(
        self,
        estimate_id: int,
        parent_section_id: Optional[int],
        exclude_section_id: Optional[int] = None,
    ) -> Optional[int]:
        stmt = (
            select(func.max(EstimateSection.sort_order))
            .where(EstimateSection.estimate_id == estimate_id)
            .where(self._parent_clause(parent_section_id))
        )
        if exclude_section_id is not None:
            stmt = stmt.where(EstimateSection.id != exclude_section_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def count_siblings(
        self,
        estimate_id: int,
        parent_section_id: Optional[int],
        exclude_section_id: Optional[int] = None,
    ) -> int:
        stmt = (
            select(func.count(EstimateSection.id))
            .where(EstimateSection.estimate_id == estimate_id)
            .where(self._parent_clause(parent_section_id))
        )
        if exclude_section_id is not None:
            stmt = stmt.where(EstimateSection.id != exclude_section_id)
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def delete_sections(self, section_ids: Iterable[int]) -> int:
        """Delete the sections with their items and the items' satellite rows."""
        ids = set(section_ids)
        if not ids:
            return 0

        item_ids = set(
            (
                await self.session.execute(
                    select(EstimateItem.id).where(EstimateItem.section_id.in_(ids))
                )
            )
            .scalars()
            .all()
        )
        frontier = set(item_ids)
        while frontier:
            nested = set(
                (
                    await self.session.execute(
                        select(EstimateItem.id).where(EstimateItem.parent_item_id.in_(frontier))
                    )
                )
                .scalars()
                .all()
            )
            frontier = nested - item_ids
            item_ids |= frontier

        await self.delete_items(item_ids)

        result = await self.session.execute(
            delete(EstimateSection).where(EstimateSection.id.in_(ids))
        )
        await self.session.flush()
        return result.rowcount or 0

    # Items

    async def create_item(self, item: EstimateItem) -> EstimateItem:
        self.session.add(item)
        await self.session.flush()
        return item

    async def create_items_batch(self, items: list[EstimateItem]) -> list[EstimateItem]:
        self.session.add_all(items)
        await self.session.flush()
        return items

    async def get_item(self, item_id: int) -> Optional[EstimateItem]:
        stmt = select(EstimateItem).where(EstimateItem.id == item_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_items_by_section(
        self, estimate_id: int, section_id: Optional[int]
    ) -> Sequence[EstimateItem]:
        clause = (
            EstimateItem.section_id.is_(None)
            if section_id is None
            else EstimateItem.section_id == section_id
        )
        stmt = (
            select(EstimateItem)
            .where(EstimateItem.estimate_id == estimate_id)
            .where(clause)
            .order_by(EstimateItem.position_number, EstimateItem.id)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def next_position_number(self, estimate_id: int) -> int:
        stmt = select(func.max(EstimateItem.position_number)).where(
            EstimateItem.estimate_id == estimate_id
        )
        result = await self.session.execute(stmt)
        current = result.scalar_one_or_none()
        return (current or 0) + 1

    async def delete_items(self, item_ids: Iterable[int]) -> int:
        ids = set(item_ids)
        if not ids:
            return 0
        for satellite in (EstimateItemResource, EstimateItemTotal, EstimateItemWork):
            await self.session.execute(delete(satellite).where(satellite.item_id.in_(ids)))
        result = await self.session.execute(delete(EstimateItem).where(EstimateItem.id.in_(ids)))
        return result.rowcount or 0

    async def add_satellites(self, rows: list[Any]) -> None:
        self.session.add_all(rows)
        await self.session.flush()

    # Bulk reads for snapshot assembly

    async def fetch_section_rows(self, estimate_id: int) -> list[Row]:
        stmt = select(
            EstimateSection.id,
            EstimateSection.parent_section_id,
            EstimateSection.section_number,
            EstimateSection.sort_order,
            EstimateSection.name,
        ).where(EstimateSection.estimate_id == estimate_id)
        return await self._mappings(stmt)

    async def fetch_item_rows(self, estimate_id: int) -> list[Row]:
        stmt = select(
            EstimateItem.id,
            EstimateItem.section_id,
            EstimateItem.parent_item_id,
            EstimateItem.position_number,
            EstimateItem.code,
            EstimateItem.name,
            EstimateItem.unit,
            EstimateItem.quantity,
            EstimateItem.unit_price,
            EstimateItem.work_type_id,
            EstimateItem.measurement_unit_id,
            EstimateItem.classification_label,
            EstimateItem.classification_confidence,
            EstimateItem.classification_source,
        ).where(EstimateItem.estimate_id == estimate_id)
        return await self._mappings(stmt)

    async def fetch_resource_rows(self, item_ids: Iterable[int]) -> list[Row]:
        ids = set(item_ids)
        if not ids:
            return []
        stmt = (
            select(
                EstimateItemResource.id,
                EstimateItemResource.item_id,
                EstimateItemResource.resource_type,
                EstimateItemResource.code,
                EstimateItemResource.name,
                EstimateItemResource.unit,
                EstimateItemResource.quantity,
                EstimateItemResource.unit_price,
            )
            .where(EstimateItemResource.item_id.in_(ids))
            .order_by(EstimateItemResource.id)
        )
        return await self._mappings(stmt)

    async def fetch_total_rows(self, item_ids: Iterable[int]) -> list[Row]:
        ids = set(item_ids)
        if not ids:
            return []
        stmt = (
            select(
                EstimateItemTotal.id,
                EstimateItemTotal.item_id,
                EstimateItemTotal.kind,
                EstimateItemTotal.amount,
            )
            .where(EstimateItemTotal.item_id.in_(ids))
            .order_by(EstimateItemTotal.id)
        )
        return await self._mappings(stmt)

    async def fetch_work_rows(self, item_ids: Iterable[int]) -> list[Row]:
        ids = set(item_ids)
        if not ids:
            return []
        stmt = (
            select(
                EstimateItemWork.id,
                EstimateItemWork.item_id,
                EstimateItemWork.name,
                EstimateItemWork.sort_order,
            )
            .where(EstimateItemWork.item_id.in_(ids))
            .order_by(EstimateItemWork.sort_order, EstimateItemWork.id)
        )
        return await self._mappings(stmt)

    async def fetch_work_type_names(self, work_type_ids: Iterable[int]) -> dict[int, str]:
        ids = {value for value in work_type_ids if value is not None}
        if not ids:
            return {}
        stmt = select(WorkType.id, WorkType.name).where(WorkType.id.in_(ids))
        result = await self.session.execute(stmt)
        return {row.id: row.name for row in result.all()}

    async def fetch_unit_symbols(self, unit_ids: Iterable[int]) -> dict[int, str]:
        ids = {value for value in unit_ids if value is not None}
        if not ids:
            return {}
        stmt = select(MeasurementUnit.id, MeasurementUnit.symbol).where(
            MeasurementUnit.id.in_(ids)
        )
        result = await self.session.execute(stmt)
        return {row.id: row.symbol for row in result.all()}

    async def flush(self) -> None:
        await self.session.flush()

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()

    async def _mappings(self, stmt: Any) -> list[Row]:
        result = await self.session.execute(stmt)
        return [dict(row) for row in result.mappings().all()]

    @staticmethod
    def _parent_clause(parent_section_id: Optional[int]):
        if parent_section_id is None:
            return EstimateSection.parent_section_id.is_(None)
        return EstimateSection.parent_section_id == parent_section_id
