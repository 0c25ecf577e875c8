"""
Linear-time assembly of an estimate's structure tree.

All rows are fetched in bulk as plain mappings (one query per table, satellite
tables keyed by the full item id set), then linked through id-indexed maps:

1. index items by id, attaching satellites and lookup names
2. link each item under its parent item, its section, or the sectionless bucket
3. index sections by id, attaching their root items
4. link each section under its parent, or at the top level

No query runs inside a linking pass. Rows are pre-sorted so every child list
comes out ordered (sections by ``sort_order``, items by ``position_number``).
Nodes whose parent row is missing are kept at the nearest valid level rather
than dropped.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from estimator.app.domains.estimate.repository import EstimateStructureRepository
from estimator.app.logging_config import get_logger

logger = get_logger("app.domains.snapshot.assembler")

Node = dict[str, Any]


@dataclass
class AssembledSnapshot:
    estimate_id: int
    payload: dict[str, list[Node]]
    section_count: int
    item_count: int
    satellite_count: int

    def row_counts(self) -> dict[str, int]:
        return {
            "sections": self.section_count,
            "items": self.item_count,
            "satellites": self.satellite_count,
        }


def snapshot_json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _group_by_item(rows: list[dict[str, Any]]) -> dict[int, list[dict[str, Any]]]:
    grouped: dict[int, list[dict[str, Any]]] = defaultdict(list)
    for row in rows:
        grouped[row["item_id"]].append(row)
    return grouped


def build_tree(
    section_rows: list[dict[str, Any]],
    item_rows: list[dict[str, Any]],
    resource_rows: Optional[list[dict[str, Any]]] = None,
    total_rows: Optional[list[dict[str, Any]]] = None,
    work_rows: Optional[list[dict[str, Any]]] = None,
    work_type_names: Optional[dict[int, str]] = None,
    unit_symbols: Optional[dict[int, str]] = None,
) -> dict[str, list[Node]]:
    resources_by_item = _group_by_item(resource_rows or [])
    totals_by_item = _group_by_item(total_rows or [])
    works_by_item = _group_by_item(work_rows or [])
    work_type_names = work_type_names or {}
    unit_symbols = unit_symbols or {}

    items_sorted = sorted(item_rows, key=lambda r: (r.get("position_number") or 0, r["id"]))
    sections_sorted = sorted(section_rows, key=lambda r: (r.get("sort_order") or 0, r["id"]))

    items_by_id: dict[int, Node] = {}
    for row in items_sorted:
        node: Node = dict(row)
        item_id = row["id"]
        node["resources"] = resources_by_item.get(item_id, [])
        node["totals"] = totals_by_item.get(item_id, [])
        node["works"] = works_by_item.get(item_id, [])
        node["childItems"] = []

        work_type_id = row.get("work_type_id")
        node["work_type"] = (
            {"id": work_type_id, "name": work_type_names[work_type_id]}
            if work_type_id in work_type_names
            else None
        )
        unit_id = row.get("measurement_unit_id")
        node["measurement_unit"] = (
            {"id": unit_id, "symbol": unit_symbols[unit_id]} if unit_id in unit_symbols else None
        )
        items_by_id[item_id] = node

    section_ids = {row["id"] for row in section_rows}
    root_items_by_section: dict[int, list[Node]] = defaultdict(list)
    items_without_section: list[Node] = []

    for node in items_by_id.values():
        parent_item_id = node.get("parent_item_id")
        if (
            parent_item_id is not None
            and parent_item_id != node["id"]
            and parent_item_id in items_by_id
        ):
            items_by_id[parent_item_id]["childItems"].append(node)
            continue
        section_id = node.get("section_id")
        if section_id is not None and section_id in section_ids:
            root_items_by_section[section_id].append(node)
        else:
            items_without_section.append(node)

    sections_by_id: dict[int, Node] = {}
    for row in sections_sorted:
        node = dict(row)
        node["items"] = root_items_by_section.get(row["id"], [])
        node["children"] = []
        sections_by_id[row["id"]] = node

    tree: list[Node] = []
    for node in sections_by_id.values():
        parent_id = node.get("parent_section_id")
        if parent_id is not None and parent_id != node["id"] and parent_id in sections_by_id:
            sections_by_id[parent_id]["children"].append(node)
        else:
            tree.append(node)

    return {"sections": tree, "itemsWithoutSection": items_without_section}


class SnapshotAssembler:
    def __init__(self, repository: EstimateStructureRepository):
        self.repository = repository

    async def assemble(self, estimate_id: int) -> AssembledSnapshot:
        section_rows = await self.repository.fetch_section_rows(estimate_id)
        item_rows = await self.repository.fetch_item_rows(estimate_id)

        resource_rows: list[dict[str, Any]] = []
        total_rows: list[dict[str, Any]] = []
        work_rows: list[dict[str, Any]] = []
        if item_rows:
            item_ids = [row["id"] for row in item_rows]
            resource_rows = await self.repository.fetch_resource_rows(item_ids)
            total_rows = await self.repository.fetch_total_rows(item_ids)
            work_rows = await self.repository.fetch_work_rows(item_ids)

        work_type_names = await self.repository.fetch_work_type_names(
            row["work_type_id"] for row in item_rows
        )
        unit_symbols = await self.repository.fetch_unit_symbols(
            row["measurement_unit_id"] for row in item_rows
        )

        payload = build_tree(
            section_rows,
            item_rows,
            resource_rows,
            total_rows,
            work_rows,
            work_type_names,
            unit_symbols,
        )

        snapshot = AssembledSnapshot(
            estimate_id=estimate_id,
            payload=payload,
            section_count=len(section_rows),
            item_count=len(item_rows),
            satellite_count=len(resource_rows) + len(total_rows) + len(work_rows),
        )
        logger.debug(f"Assembled estimate {estimate_id}: {snapshot.row_counts()}")
        return snapshot
