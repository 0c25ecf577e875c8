"""
Tests for hierarchical section numbering.

Verifies:
- Appends take the next dense position and number
- Inserts at an explicit position shift later siblings
- Deletes close the gap in the sibling scope
- Moves renumber both scopes and cascade into descendants
- Moves under the section itself or a descendant are rejected
- Random insert, move and delete sequences keep numbering valid at every step
"""

import random

import pytest

from estimator.app.domains.estimate.errors import StructureInvariantError
from estimator.app.domains.estimate.models import EstimateSection
from estimator.app.domains.estimate.numbering import (
    SectionNumberingEngine,
    compose_number,
    requires_scope_renumber,
)
from estimator.app.domains.estimate.schemas import SectionUpdate


def numbers(*sections):
    return [(s.section_number, s.sort_order) for s in sections]


class TestHelpers:
    def test_compose_number(self):
        assert compose_number("", 3) == "3"
        assert compose_number("2.1", 4) == "2.1.4"

    @pytest.mark.parametrize(
        "sort_order,sibling_max,expected",
        [
            (0, None, False),
            (2, None, True),
            (3, 2, False),
            (1, 2, True),
            (2, 2, True),
            (7, 2, True),
        ],
    )
    def test_requires_scope_renumber(self, sort_order, sibling_max, expected):
        assert requires_scope_renumber(sort_order, sibling_max) is expected


class TestAppendAndInsert:
    @pytest.mark.asyncio
    async def test_appends_are_dense(self, make_section):
        a = await make_section("A")
        b = await make_section("B")
        c = await make_section("C")
        assert numbers(a, b, c) == [("1", 0), ("2", 1), ("3", 2)]

    @pytest.mark.asyncio
    async def test_child_numbers_use_parent_prefix(self, make_section):
        await make_section("A")
        b = await make_section("B")
        b1 = await make_section("B1", parent=b)
        b2 = await make_section("B2", parent=b)
        assert numbers(b1, b2) == [("2.1", 0), ("2.2", 1)]

    @pytest.mark.asyncio
    async def test_insert_at_position_shifts_later_siblings(self, make_section):
        a = await make_section("A")
        b = await make_section("B")
        b1 = await make_section("B1", parent=b)
        c = await make_section("C")

        d = await make_section("D", sort_order=1)

        assert numbers(a, d, b, c) == [("1", 0), ("2", 1), ("3", 2), ("4", 3)]
        assert b1.section_number == "3.1"

    @pytest.mark.asyncio
    async def test_insert_beyond_end_is_compacted(self, make_section):
        a = await make_section("A")
        b = await make_section("B", sort_order=10)
        assert numbers(a, b) == [("1", 0), ("2", 1)]

    @pytest.mark.asyncio
    async def test_first_section_with_nonzero_order(self, make_section):
        a = await make_section("A", sort_order=5)
        assert numbers(a) == [("1", 0)]

    @pytest.mark.asyncio
    async def test_missing_parent_rejected(self, make_section):
        with pytest.raises(StructureInvariantError):
            await make_section("Orphan", parent=EstimateSection(id=99999))


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_middle_sibling_closes_gap(self, make_section, section_service, estimate):
        a = await make_section("A")
        b = await make_section("B")
        c = await make_section("C")

        await section_service.delete_section(estimate.id, b.id)

        assert numbers(a, c) == [("1", 0), ("2", 1)]

    @pytest.mark.asyncio
    async def test_delete_removes_subtree_and_cascades(
        self, make_section, section_service, structure_repository, estimate
    ):
        await make_section("A")
        b = await make_section("B")
        b1 = await make_section("B1", parent=b)
        await make_section("B1a", parent=b1)
        c = await make_section("C")
        c1 = await make_section("C1", parent=c)

        deleted = await section_service.delete_section(estimate.id, b.id)

        remaining = await structure_repository.list_sections_by_estimate(estimate.id)
        assert deleted == 3
        assert sorted(s.name for s in remaining) == ["A", "C", "C1"]
        assert c.section_number == "2"
        assert c1.section_number == "2.1"


class TestMove:
    @pytest.mark.asyncio
    async def test_reorder_within_scope(self, make_section, section_service, estimate):
        a = await make_section("A")
        b = await make_section("B")
        b1 = await make_section("B1", parent=b)
        c = await make_section("C")

        await section_service.update_section(estimate.id, c.id, SectionUpdate(sort_order=0))

        assert numbers(c, a, b) == [("1", 0), ("2", 1), ("3", 2)]
        assert b1.section_number == "3.1"

    @pytest.mark.asyncio
    async def test_move_down_within_scope(self, make_section, section_service, estimate):
        a = await make_section("A")
        b = await make_section("B")
        c = await make_section("C")

        await section_service.update_section(estimate.id, a.id, SectionUpdate(sort_order=2))

        assert numbers(b, c, a) == [("1", 0), ("2", 1), ("3", 2)]

    @pytest.mark.asyncio
    async def test_move_to_other_parent_renumbers_both_scopes(
        self, make_section, section_service, estimate
    ):
        a = await make_section("A")
        b = await make_section("B")
        b1 = await make_section("B1", parent=b)
        c = await make_section("C")

        await section_service.move_section(estimate.id, b.id, a.id)

        assert numbers(a, c) == [("1", 0), ("2", 1)]
        assert b.parent_section_id == a.id
        assert numbers(b) == [("1.1", 0)]
        assert b1.section_number == "1.1.1"

    @pytest.mark.asyncio
    async def test_move_to_root_at_position(self, make_section, section_service, estimate):
        a = await make_section("A")
        a1 = await make_section("A1", parent=a)
        a2 = await make_section("A2", parent=a)
        b = await make_section("B")

        await section_service.move_section(estimate.id, a1.id, None, sort_order=1)

        assert numbers(a, a1, b) == [("1", 0), ("2", 1), ("3", 2)]
        assert numbers(a2) == [("1.1", 0)]

    @pytest.mark.asyncio
    async def test_move_under_itself_rejected(self, make_section, section_service, estimate):
        a = await make_section("A")
        with pytest.raises(StructureInvariantError):
            await section_service.move_section(estimate.id, a.id, a.id)

    @pytest.mark.asyncio
    async def test_move_under_descendant_rejected(self, make_section, section_service, estimate):
        a = await make_section("A")
        a1 = await make_section("A1", parent=a)
        a1x = await make_section("A1x", parent=a1)

        with pytest.raises(StructureInvariantError):
            await section_service.move_section(estimate.id, a.id, a1x.id)

        assert a.parent_section_id is None
        assert a.section_number == "1"

    @pytest.mark.asyncio
    async def test_same_position_is_noop(
        self, make_section, section_service, estimate, structure_repository
    ):
        a = await make_section("A")
        engine = SectionNumberingEngine(structure_repository)
        assert await engine.on_updating(a, None, 0) is None
        assert await engine.on_updating(a, None, None) is None


class TestRenumberAndValidate:
    @pytest.mark.asyncio
    async def test_validate_reports_drift_and_renumber_repairs(
        self, make_section, section_service, structure_repository, estimate
    ):
        a = await make_section("A")
        b = await make_section("B")
        b1 = await make_section("B1", parent=b)

        b.section_number = "7"
        b1.section_number = "7.9"
        b1.sort_order = 4
        await structure_repository.flush()

        report = await section_service.validate_numbering(estimate.id)
        assert not report.is_valid
        assert {issue.section_id for issue in report.issues} == {b.id, b1.id}

        changed = await section_service.renumber(estimate.id)

        assert changed == 2
        assert numbers(a, b, b1) == [("1", 0), ("2", 1), ("2.1", 0)]
        assert (await section_service.validate_numbering(estimate.id)).is_valid

    @pytest.mark.asyncio
    async def test_empty_estimate_is_valid(self, section_service, estimate):
        report = await section_service.validate_numbering(estimate.id)
        assert report.is_valid
        assert report.section_count == 0


def subtree_ids(root_id, sections):
    ids = {root_id}
    grew = True
    while grew:
        grew = False
        for section in sections:
            if section.parent_section_id in ids and section.id not in ids:
                ids.add(section.id)
                grew = True
    return ids


class TestRandomOperationSequences:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("seed", [1, 42, 977])
    async def test_numbering_valid_after_every_step(
        self, make_section, section_service, structure_repository, estimate, seed
    ):
        """Inserts, moves and deletes in random order never leave drift behind."""
        rng = random.Random(seed)
        created = 0

        for step in range(60):
            sections = list(await structure_repository.list_sections_by_estimate(estimate.id))
            operation = rng.choice(["insert", "insert", "move", "delete"]) if sections else "insert"

            if operation == "insert":
                parent = rng.choice([None] + sections)
                parent_id = parent.id if parent else None
                siblings = [s for s in sections if s.parent_section_id == parent_id]
                sort_order = rng.choice([None, rng.randint(0, len(siblings) + 2)])
                created += 1
                await make_section(f"S{created}", parent=parent, sort_order=sort_order)
            elif operation == "move":
                section = rng.choice(sections)
                blocked = subtree_ids(section.id, sections)
                target = rng.choice([None] + [s.id for s in sections if s.id not in blocked])
                await section_service.move_section(
                    estimate.id, section.id, target, sort_order=rng.choice([None, rng.randint(0, 4)])
                )
            else:
                await section_service.delete_section(estimate.id, rng.choice(sections).id)

            report = await section_service.validate_numbering(estimate.id)
            remaining = await structure_repository.list_sections_by_estimate(estimate.id)
            assert report.is_valid, (step, operation, report.issues)
            assert report.section_count == len(remaining)
