import io
import re
import zipfile
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Iterable, Optional

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from estimator.app.domains.estimate_import.errors import WorkbookFormatError
from estimator.app.logging_config import get_logger

logger = get_logger("app.domains.estimate_import.reader")

MAX_HEADER_SCAN_ROWS = 50
MIN_HEADER_MATCHES = 3

# Checked in this order; a cell is assigned to the first field whose keyword it contains
COLUMN_KEYWORDS: dict[str, tuple[str, ...]] = {
    "code": ("шифр", "обоснование", "код", "номер расценки", "code"),
    "name": ("наименование", "название", "позиция", "name", "description"),
    "quantity": ("количество", "кол-во", "объем", "объём", "quantity", "qty"),
    "price": ("цена", "стоимость", "расценка", "price"),
    "unit": ("ед.изм", "ед. изм", "единица", "измерение", "unit"),
}

SECTION_PREFIXES = ("раздел", "section")
SUBSECTION_PREFIXES = ("подраздел", "subsection")
TOTAL_PREFIXES = ("итого", "всего", "total")

_NUMBER_PREFIX = re.compile(r"^-?\d*\.?\d+")


class RowKind(str, Enum):
    ITEM = "item"
    SECTION = "section"
    SUBSECTION = "subsection"


@dataclass
class ImportRow:
    row_number: int
    kind: RowKind
    name: str
    code: Optional[str] = None
    unit: Optional[str] = None
    quantity: Optional[Decimal] = None
    price: Optional[Decimal] = None
    # Number of enclosing sections; an item without one belongs to the latest section
    level: Optional[int] = None

    @property
    def is_section(self) -> bool:
        return self.kind in {RowKind.SECTION, RowKind.SUBSECTION}


@dataclass
class ParsedWorkbook:
    sheet_title: str
    header_row: int
    columns: dict[str, int]
    rows: list[ImportRow] = field(default_factory=list)
    skipped_rows: int = 0

    @property
    def item_count(self) -> int:
        return sum(1 for row in self.rows if not row.is_section)

    @property
    def section_count(self) -> int:
        return sum(1 for row in self.rows if row.is_section)


def cell_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def parse_number(value: Any) -> Optional[Decimal]:
    """Read a numeric cell, tolerating spaces, comma decimals and multi-line text.

    Only the first line is considered, and text that is mostly non-numeric
    (such as "Раздел 1") yields None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        try:
            return Decimal(str(value))
        except InvalidOperation:
            return None

    first_line = str(value).split("\n", 1)[0].strip()
    cleaned = first_line.replace(" ", "").replace("\xa0", "").replace(",", ".")
    if not cleaned:
        return None
    match = _NUMBER_PREFIX.match(cleaned)
    if not match:
        return None
    numeric_chars = re.sub(r"[^0-9.]", "", cleaned)
    if len(numeric_chars) / len(cleaned) <= 0.5:
        return None
    try:
        return Decimal(match.group(0))
    except InvalidOperation:
        return None


def detect_columns(values: Iterable[Any]) -> dict[str, int]:
    columns: dict[str, int] = {}
    for index, value in enumerate(values):
        text = cell_text(value).lower()
        if not text:
            continue
        for field_name, keywords in COLUMN_KEYWORDS.items():
            if field_name in columns:
                continue
            if any(keyword in text for keyword in keywords):
                columns[field_name] = index
                break
    return columns


def is_technical_row(values: list[Any]) -> bool:
    """Column-numbering rows such as ``1 | 2 | 3 | 4`` printed under the header."""
    non_empty = [cell_text(v) for v in values if cell_text(v)]
    if len(non_empty) < 3:
        return False

    numeric = 0
    sequential = 0
    previous: Optional[Decimal] = None
    for text in non_empty:
        number = parse_number(text)
        if number is None:
            if len(text) > 10:
                return False
            continue
        numeric += 1
        if previous is not None and number == previous + 1:
            sequential += 1
        previous = number

    return sequential >= 2 and numeric / len(non_empty) > 0.7


def classify_row_kind(
    name: str,
    code: Optional[str],
    quantity: Optional[Decimal],
    price: Optional[Decimal],
) -> RowKind:
    if quantity is not None or price is not None:
        return RowKind.ITEM
    lowered = name.lower()
    if lowered.startswith(SUBSECTION_PREFIXES):
        return RowKind.SUBSECTION
    if lowered.startswith(SECTION_PREFIXES):
        return RowKind.SECTION
    if not code:
        return RowKind.SECTION
    return RowKind.ITEM


class WorkbookReader:
    """Reads estimate rows from the active sheet of an xlsx workbook."""

    def read(self, data: bytes, file_name: str = "workbook.xlsx") -> ParsedWorkbook:
        try:
            workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
        except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
            raise WorkbookFormatError(file_name, str(e)) from e

        try:
            sheet = workbook.active
            if sheet is None:
                raise WorkbookFormatError(file_name, "workbook has no sheets")
            raw_rows = [list(row) for row in sheet.iter_rows(values_only=True)]
            title = sheet.title
        finally:
            workbook.close()

        header_index, columns = self._find_header(raw_rows)
        if header_index is None:
            raise WorkbookFormatError(
                file_name,
                f"no header row with at least {MIN_HEADER_MATCHES} known columns "
                f"in the first {MAX_HEADER_SCAN_ROWS} rows",
            )

        parsed = ParsedWorkbook(sheet_title=title, header_row=header_index + 1, columns=columns)
        for offset, values in enumerate(raw_rows[header_index + 1 :], start=header_index + 2):
            row = self._map_row(offset, values, columns)
            if row is None:
                parsed.skipped_rows += 1
                continue
            parsed.rows.append(row)

        logger.info(
            f"Read '{file_name}' sheet '{title}': header at row {parsed.header_row}, "
            f"{parsed.item_count} items, {parsed.section_count} sections, "
            f"{parsed.skipped_rows} skipped"
        )
        return parsed

    def _find_header(self, raw_rows: list[list[Any]]) -> tuple[Optional[int], dict[str, int]]:
        best_index: Optional[int] = None
        best_columns: dict[str, int] = {}
        for index, values in enumerate(raw_rows[:MAX_HEADER_SCAN_ROWS]):
            columns = detect_columns(values)
            if "name" not in columns or len(columns) < MIN_HEADER_MATCHES:
                continue
            if len(columns) > len(best_columns):
                best_index, best_columns = index, columns
        return best_index, best_columns

    def _map_row(
        self, row_number: int, values: list[Any], columns: dict[str, int]
    ) -> Optional[ImportRow]:
        if not any(cell_text(v) for v in values):
            return None
        if is_technical_row(values):
            return None

        def pick(field_name: str) -> Any:
            index = columns.get(field_name)
            if index is None or index >= len(values):
                return None
            return values[index]

        name = cell_text(pick("name"))
        if not name or name.lower().startswith(TOTAL_PREFIXES):
            return None

        code = cell_text(pick("code")) or None
        unit = cell_text(pick("unit")) or None
        quantity = parse_number(pick("quantity"))
        price = parse_number(pick("price"))

        kind = classify_row_kind(name, code, quantity, price)
        if kind is not RowKind.ITEM:
            level = 1 if kind is RowKind.SUBSECTION else 0
            return ImportRow(row_number=row_number, kind=kind, name=name, level=level)

        return ImportRow(
            row_number=row_number,
            kind=kind,
            name=name,
            code=code,
            unit=unit,
            quantity=quantity,
            price=price,
        )
