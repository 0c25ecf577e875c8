from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

UNCLASSIFIED_SOURCE = "unclassified"


class ItemLabel(str, Enum):
    WORK = "work"
    MATERIAL = "material"
    EQUIPMENT = "equipment"
    LABOR = "labor"


_LABEL_ALIASES: dict[str, ItemLabel] = {
    "work": ItemLabel.WORK,
    "works": ItemLabel.WORK,
    "material": ItemLabel.MATERIAL,
    "materials": ItemLabel.MATERIAL,
    "equipment": ItemLabel.EQUIPMENT,
    "machine": ItemLabel.EQUIPMENT,
    "machinery": ItemLabel.EQUIPMENT,
    "mechanism": ItemLabel.EQUIPMENT,
    "labor": ItemLabel.LABOR,
    "labour": ItemLabel.LABOR,
}


def normalize_label(value: object) -> ItemLabel:
    """Map free text from any source onto the closed label set.

    Anything unrecognised (including empty values) becomes ``work``.
    """
    if isinstance(value, ItemLabel):
        return value
    if not isinstance(value, str):
        return ItemLabel.WORK
    return _LABEL_ALIASES.get(value.strip().lower(), ItemLabel.WORK)


class ClassificationRow(BaseModel):
    """One import row as seen by the classification strategies."""

    code: str = ""
    name: str = ""
    unit: Optional[str] = None
    price: Optional[float] = None

    @property
    def trimmed_code(self) -> str:
        return self.code.strip()


class ClassificationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: ItemLabel
    confidence: float = Field(..., ge=0.0, le=1.0)
    source: str

    @property
    def is_unclassified(self) -> bool:
        return self.source == UNCLASSIFIED_SOURCE

    @classmethod
    def unclassified(cls) -> "ClassificationResult":
        return cls(label=ItemLabel.WORK, confidence=0.0, source=UNCLASSIFIED_SOURCE)


@dataclass
class ClassificationContext:
    """State scoped to a single pipeline invocation.

    ``normative_memo`` maps a trimmed code to its reference label, or ``None``
    for a confirmed miss, so a code is looked up at most once per invocation.
    """

    normative_memo: dict[str, Optional[ItemLabel]] = field(default_factory=dict)
    lookups_performed: int = 0


class ClassificationSummary(BaseModel):
    total_rows: int
    by_source: dict[str, int] = Field(default_factory=dict)
    by_label: dict[str, int] = Field(default_factory=dict)
    needs_review: int = 0
    duration_ms: float = 0.0

    @property
    def resolved_rate(self) -> float:
        if self.total_rows == 0:
            return 0.0
        return ((self.total_rows - self.needs_review) / self.total_rows) * 100
