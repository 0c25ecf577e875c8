import codecs
import re
import xml.etree.ElementTree as ET
from decimal import ROUND_HALF_UP, Decimal
from pathlib import PurePath
from typing import Iterable, Optional

from estimator.app.domains.estimate_import.errors import WorkbookFormatError
from estimator.app.domains.estimate_import.reader import (
    ImportRow,
    ParsedWorkbook,
    RowKind,
    parse_number,
)
from estimator.app.logging_config import get_logger

logger = get_logger("app.domains.estimate_import.xml_reader")

XML_EXTENSIONS = {".xml", ".gsfx", ".gge"}

# Checked in this order, first among the root itself and then its direct children
ESTIMATE_NODE_TAGS = ("estimate", "localestimate", "objectestimate", "lsr", "smeta")
SECTION_TAGS = {"section", "razdel", "chapter"}
POSITION_TAGS = {"position", "item", "poz"}
# Totals, report settings and resource breakdowns never hold positions of their own
SKIPPED_TAGS = {
    "itog",
    "itogres",
    "reportoptions",
    "properties",
    "header",
    "signature",
    "resources",
}
IGNORED_SECTIONS = {"сводка затрат", "ведомость ресурсов", "ресурсы"}

PRICE_QUANTUM = Decimal("0.01")

_DECLARED_ENCODING = re.compile(rb"""<\?xml[^>]*encoding\s*=\s*["']([A-Za-z0-9._\-]+)["']""")
_XML_DECLARATION = re.compile(r"^\s*<\?xml[^>]*\?>")
_INVALID_XML_CHARS = re.compile(r"[^\t\n\r\x20-\uD7FF\uE000-\uFFFD\U00010000-\U0010FFFF]+")


def local_name(tag: str) -> str:
    """``{http://www.gge.ru/2001/Schema}Position`` -> ``position``."""
    return tag.rsplit("}", 1)[-1].lower()


def looks_like_xml(file_name: str, data: bytes) -> bool:
    if PurePath(file_name).suffix.lower() in XML_EXTENSIONS:
        return True
    head = data[:256]
    if head.startswith(codecs.BOM_UTF8):
        head = head[len(codecs.BOM_UTF8) :]
    return head.lstrip().startswith(b"<")


def decode_xml(data: bytes, file_name: str = "estimate.xml") -> str:
    """Decode an estimate export to text ready for the parser.

    Exports often declare no encoding while being Windows-1251, or declare
    UTF-8 while not being it; both fall back to cp1251. The XML declaration
    is dropped since the text is already decoded, and characters XML does
    not allow are replaced with spaces.
    """
    if data.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        text = data.decode("utf-16")
    else:
        if data.startswith(codecs.BOM_UTF8):
            data = data[len(codecs.BOM_UTF8) :]
        declared = _DECLARED_ENCODING.search(data[:200])
        encoding = declared.group(1).decode("ascii") if declared else "utf-8"
        try:
            text = data.decode(encoding)
        except LookupError as e:
            raise WorkbookFormatError(file_name, f"unknown encoding '{encoding}'") from e
        except UnicodeDecodeError:
            text = data.decode("cp1251", errors="replace")

    text = _XML_DECLARATION.sub("", text, count=1)
    return _INVALID_XML_CHARS.sub(" ", text)


def attribute(node: ET.Element, key: str) -> str:
    wanted = key.lower()
    for name, value in node.attrib.items():
        if local_name(name) == wanted:
            return value.strip()
    return ""


def child(node: ET.Element, key: str) -> Optional[ET.Element]:
    wanted = key.lower()
    for element in node:
        if local_name(element.tag) == wanted:
            return element
    return None


def node_value(node: ET.Element, keys: Iterable[str]) -> str:
    """First non-empty attribute or child value among ``keys``.

    A child element contributes its ``Value`` attribute when present, as in
    ``<Price Value="12.5"/>``, and its text otherwise.
    """
    for key in keys:
        value = attribute(node, key)
        if value:
            return value
        element = child(node, key)
        if element is not None:
            value = (element.get("Value") or element.text or "").strip()
            if value:
                return value
    return ""


def find_estimate_node(root: ET.Element) -> ET.Element:
    if local_name(root.tag) in ESTIMATE_NODE_TAGS:
        return root
    for tag in ESTIMATE_NODE_TAGS:
        element = child(root, tag)
        if element is not None:
            return element
    return root


class _StructureWalk:
    """Flattens nested sections and positions into rows in document order."""

    def __init__(self):
        self.rows: list[ImportRow] = []
        self.skipped = 0
        self.seen_sys_ids: set[str] = set()

    def collect(self, node: ET.Element, level: int) -> None:
        for element in node:
            name = local_name(element.tag)
            if name in SKIPPED_TAGS:
                continue
            if name in SECTION_TAGS:
                self.section(element, level)
            elif name in POSITION_TAGS:
                self.position(element, level)
            else:
                self.collect(element, level)

    def section(self, node: ET.Element, level: int) -> None:
        number = node_value(node, ("Number", "Num"))
        name = node_value(node, ("Name", "Caption"))
        if name.lower() in IGNORED_SECTIONS:
            self.skipped += 1
            return

        self.rows.append(
            ImportRow(
                row_number=len(self.rows) + 1,
                kind=RowKind.SECTION if level == 0 else RowKind.SUBSECTION,
                name=name or f"Раздел {number}".strip(),
                level=level,
            )
        )
        self.collect(node, level + 1)

    def position(self, node: ET.Element, level: int) -> None:
        sys_id = attribute(node, "SysID")
        if sys_id:
            if sys_id in self.seen_sys_ids:
                self.skipped += 1
                return
            self.seen_sys_ids.add(sys_id)

        # Technical coefficient lines repeat their parent position
        if "TechK" in attribute(node, "DBFlags"):
            self.skipped += 1
            return

        name = node_value(node, ("Name", "Caption"))
        if not name:
            self.skipped += 1
            return

        quantity = parse_number(node_value(node, ("Quant", "Quantity")))
        price = parse_number(node_value(node, ("Price", "UnitCost")))
        if price is None and quantity:
            cost = parse_number(node_value(node, ("Cost", "TotalCost")))
            if cost is not None:
                price = (cost / quantity).quantize(PRICE_QUANTUM, rounding=ROUND_HALF_UP)

        self.rows.append(
            ImportRow(
                row_number=len(self.rows) + 1,
                kind=RowKind.ITEM,
                name=name,
                code=node_value(node, ("Justification", "Code")) or None,
                unit=node_value(node, ("Measure", "Unit")) or None,
                quantity=quantity,
                price=price,
                level=level,
            )
        )


class XmlEstimateReader:
    """Reads GrandSmeta / GGE style XML exports into the same rows as a workbook."""

    def read(self, data: bytes, file_name: str = "estimate.xml") -> ParsedWorkbook:
        text = decode_xml(data, file_name)
        try:
            root = ET.fromstring(text)
        except ET.ParseError as e:
            raise WorkbookFormatError(file_name, f"invalid XML: {e}") from e

        estimate_node = find_estimate_node(root)
        walk = _StructureWalk()
        walk.collect(estimate_node, level=0)
        if not walk.rows:
            raise WorkbookFormatError(file_name, "no estimate sections or positions found")

        title = node_value(estimate_node, ("Name", "Caption"))
        header = child(root, "Header")
        if header is None:
            header = child(root, "Properties")
        if not title and header is not None:
            title = node_value(header, ("Name", "Caption"))

        parsed = ParsedWorkbook(
            sheet_title=title or local_name(root.tag),
            header_row=0,
            columns={},
            rows=walk.rows,
            skipped_rows=walk.skipped,
        )
        logger.info(
            f"Read XML estimate '{file_name}' ({local_name(estimate_node.tag)}): "
            f"{parsed.item_count} items, {parsed.section_count} sections, "
            f"{parsed.skipped_rows} skipped"
        )
        return parsed
