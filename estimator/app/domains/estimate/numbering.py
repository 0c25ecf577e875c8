"""
Hierarchical section numbering.

``section_number`` is derived state: the dot-joined 1-based ordinals of a
section and its ancestors, where ordinals follow the dense ``sort_order``
sequence of each sibling scope. The engine is driven by lifecycle hooks of the
section store and writes through the caller's session without committing, so a
rollback of the triggering mutation also rolls back the renumbering.
"""

from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from estimator.app.domains.estimate.errors import StructureInvariantError
from estimator.app.domains.estimate.models import EstimateSection
from estimator.app.domains.estimate.repository import EstimateStructureRepository
from estimator.app.domains.estimate.schemas import NumberingIssue, NumberingReport
from estimator.app.logging_config import get_logger

logger = get_logger("app.domains.estimate.numbering")


class SectionEvent(str, Enum):
    CREATING = "creating"
    CREATED = "created"
    UPDATING = "updating"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass(frozen=True)
class StructuralChange:
    section_id: int
    estimate_id: int
    old_parent_id: Optional[int]
    new_parent_id: Optional[int]
    old_sort_order: int
    new_sort_order: int

    @property
    def parent_changed(self) -> bool:
        return self.old_parent_id != self.new_parent_id


def compose_number(prefix: str, ordinal: int) -> str:
    return f"{prefix}.{ordinal}" if prefix else str(ordinal)


def requires_scope_renumber(sort_order: int, sibling_max: Optional[int]) -> bool:
    """True unless ``sort_order`` is exactly the next dense slot of the scope.

    An order at or below the current maximum collides with an existing
    sibling; an order beyond ``max + 1`` would leave a gap.
    """
    if sibling_max is None:
        return sort_order != 0
    return sort_order != sibling_max + 1


class _ScopeIndex:
    """Id-indexed adjacency over every section of one estimate."""

    def __init__(self, sections: Sequence[EstimateSection]):
        self.by_id: dict[int, EstimateSection] = {section.id: section for section in sections}
        self.children: dict[Optional[int], list[EstimateSection]] = defaultdict(list)
        for section in sections:
            parent_id = section.parent_section_id
            if parent_id is not None and parent_id not in self.by_id:
                parent_id = None
            self.children[parent_id].append(section)
        for siblings in self.children.values():
            siblings.sort(key=lambda s: (s.sort_order, s.id))

    def prefix_for(self, parent_id: Optional[int]) -> str:
        if parent_id is None:
            return ""
        parent = self.by_id.get(parent_id)
        return parent.section_number if parent is not None else ""


class SectionNumberingEngine:
    def __init__(self, repository: EstimateStructureRepository):
        self.repository = repository

    async def on_creating(self, section: EstimateSection) -> None:
        """Fill ``sort_order`` and ``section_number`` for a section about to be inserted."""
        parent_prefix = ""
        if section.parent_section_id is not None:
            parent = await self._require_parent(section.estimate_id, section.parent_section_id)
            parent_prefix = parent.section_number

        if section.sort_order is None:
            current_max = await self.repository.max_sort_order(
                section.estimate_id, section.parent_section_id
            )
            section.sort_order = 0 if current_max is None else current_max + 1

        if not section.section_number:
            sibling_count = await self.repository.count_siblings(
                section.estimate_id, section.parent_section_id
            )
            section.section_number = compose_number(parent_prefix, sibling_count + 1)

    async def on_created(self, section: EstimateSection) -> int:
        sibling_max = await self.repository.max_sort_order(
            section.estimate_id, section.parent_section_id, exclude_section_id=section.id
        )
        if not requires_scope_renumber(section.sort_order, sibling_max):
            return 0

        logger.debug(
            f"Section {section.id} inserted at order {section.sort_order} "
            f"(scope max {sibling_max}), renumbering scope"
        )
        return await self.renumber_scope(
            section.estimate_id,
            section.parent_section_id,
            anchor=(section.id, section.sort_order),
        )

    async def on_updating(
        self,
        section: EstimateSection,
        new_parent_id: Optional[int],
        new_sort_order: Optional[int],
    ) -> Optional[StructuralChange]:
        """Validate a requested move and describe it, or return None for a no-op.

        The section itself is not modified. Raises ``StructureInvariantError``
        when the move would make the section its own ancestor or cross
        estimates.
        """
        old_parent_id = section.parent_section_id
        old_sort_order = section.sort_order

        if new_parent_id != old_parent_id:
            await self._validate_new_parent(section, new_parent_id)
            if new_sort_order is None:
                current_max = await self.repository.max_sort_order(
                    section.estimate_id, new_parent_id, exclude_section_id=section.id
                )
                new_sort_order = 0 if current_max is None else current_max + 1
        elif new_sort_order is None or new_sort_order == old_sort_order:
            return None

        return StructuralChange(
            section_id=section.id,
            estimate_id=section.estimate_id,
            old_parent_id=old_parent_id,
            new_parent_id=new_parent_id,
            old_sort_order=old_sort_order,
            new_sort_order=new_sort_order,
        )

    async def on_updated(self, section: EstimateSection, change: StructuralChange) -> int:
        changed = await self.renumber_scope(
            change.estimate_id,
            change.new_parent_id,
            anchor=(section.id, change.new_sort_order),
        )
        if change.parent_changed:
            changed += await self.renumber_scope(change.estimate_id, change.old_parent_id)
        logger.debug(
            f"Section {section.id} moved ({change.old_parent_id}:{change.old_sort_order} -> "
            f"{change.new_parent_id}:{change.new_sort_order}), {changed} sections renumbered"
        )
        return changed

    async def on_deleted(self, estimate_id: int, parent_section_id: Optional[int]) -> int:
        return await self.renumber_scope(estimate_id, parent_section_id)

    async def renumber_scope(
        self,
        estimate_id: int,
        parent_section_id: Optional[int],
        anchor: Optional[tuple[int, int]] = None,
        force_cascade: bool = False,
    ) -> int:
        """
        Make one sibling scope dense and renumber it, cascading into descendants.

        ``anchor`` is ``(section_id, requested_order)``: that section is placed
        at the requested position among the others, which keep their relative
        order. Descendant scopes are revisited only when their prefix changed,
        unless ``force_cascade`` is set.

        Returns the number of sections whose order or number changed.
        """
        sections = await self.repository.list_sections_by_estimate(estimate_id)
        index = _ScopeIndex(sections)

        changed = 0
        pending: list[tuple[Optional[int], str, Optional[tuple[int, int]]]] = [
            (parent_section_id, index.prefix_for(parent_section_id), anchor)
        ]
        while pending:
            scope_parent, prefix, scope_anchor = pending.pop()
            ordered = self._ordered_scope(index.children.get(scope_parent, []), scope_anchor)
            for position, sibling in enumerate(ordered):
                number = compose_number(prefix, position + 1)
                number_changed = sibling.section_number != number
                if number_changed or sibling.sort_order != position:
                    changed += 1
                sibling.sort_order = position
                sibling.section_number = number
                if (number_changed or force_cascade) and index.children.get(sibling.id):
                    pending.append((sibling.id, number, None))

        await self.repository.flush()
        return changed

    async def renumber_estimate(self, estimate_id: int) -> int:
        changed = await self.renumber_scope(estimate_id, None, force_cascade=True)
        logger.info(f"Renumbered estimate {estimate_id}: {changed} sections changed")
        return changed

    async def validate_numbering(self, estimate_id: int) -> NumberingReport:
        sections = await self.repository.list_sections_by_estimate(estimate_id)
        index = _ScopeIndex(sections)
        issues: list[NumberingIssue] = []

        pending: list[tuple[Optional[int], str]] = [(None, "")]
        while pending:
            scope_parent, prefix = pending.pop()
            for position, sibling in enumerate(index.children.get(scope_parent, [])):
                expected = compose_number(prefix, position + 1)
                if sibling.section_number != expected or sibling.sort_order != position:
                    issues.append(
                        NumberingIssue(
                            section_id=sibling.id,
                            parent_section_id=sibling.parent_section_id,
                            expected_number=expected,
                            actual_number=sibling.section_number,
                            expected_sort_order=position,
                            actual_sort_order=sibling.sort_order,
                        )
                    )
                pending.append((sibling.id, expected))

        return NumberingReport(
            estimate_id=estimate_id,
            section_count=len(sections),
            is_valid=not issues,
            issues=issues,
        )

    @staticmethod
    def _ordered_scope(
        siblings: list[EstimateSection], anchor: Optional[tuple[int, int]]
    ) -> list[EstimateSection]:
        if anchor is None:
            return list(siblings)
        anchor_id, requested = anchor
        moved = next((s for s in siblings if s.id == anchor_id), None)
        if moved is None:
            return list(siblings)
        others = [s for s in siblings if s.id != anchor_id]
        position = max(0, min(requested, len(others)))
        return others[:position] + [moved] + others[position:]

    async def _require_parent(self, estimate_id: int, parent_id: int) -> EstimateSection:
        parent = await self.repository.get_section(parent_id)
        if parent is None:
            raise StructureInvariantError(
                estimate_id, f"parent section {parent_id} does not exist"
            )
        if parent.estimate_id != estimate_id:
            raise StructureInvariantError(
                estimate_id, f"parent section {parent_id} belongs to another estimate"
            )
        return parent

    async def _validate_new_parent(
        self, section: EstimateSection, new_parent_id: Optional[int]
    ) -> None:
        if new_parent_id is None:
            return
        if new_parent_id == section.id:
            raise StructureInvariantError(
                section.estimate_id, "a section cannot be its own parent", section.id
            )
        await self._require_parent(section.estimate_id, new_parent_id)

        sections = await self.repository.list_sections_by_estimate(section.estimate_id)
        parents = {s.id: s.parent_section_id for s in sections}
        visited: set[int] = set()
        cursor: Optional[int] = new_parent_id
        while cursor is not None and cursor not in visited:
            if cursor == section.id:
                raise StructureInvariantError(
                    section.estimate_id,
                    f"section {new_parent_id} is a descendant of section {section.id}",
                    section.id,
                )
            visited.add(cursor)
            cursor = parents.get(cursor)
