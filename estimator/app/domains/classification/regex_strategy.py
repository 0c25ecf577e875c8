import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence

from estimator.app.domains.classification.base import ClassificationStrategy
from estimator.app.domains.classification.schemas import (
    ClassificationContext,
    ClassificationResult,
    ClassificationRow,
    ItemLabel,
)
from estimator.app.logging_config import get_logger

logger = get_logger("app.domains.classification.regex_strategy")

ACTIVITY_KEYWORDS = (
    "монтаж",
    "установка",
    "укладка",
    "устройство",
    "разборка",
    "смена",
    "демонтаж",
    "прокладка",
    "врезка",
    "заделка",
    "окраска",
    "изоляция",
    "присоединение",
    "сборка",
    "настройка",
    "пусконалад",
    "сверление",
    "резка",
    "очистка",
)

EQUIPMENT_KEYWORD = "оборудование"

# Machinery and equipment prefixes handled by the strict rules
_NON_MATERIAL_PREFIXES = frozenset({"91", "08", "61", "62", "63", "64"})


class RuleTier(str, Enum):
    STRICT = "regex_strict"
    LOOSE = "regex_loose"

    @property
    def confidence(self) -> float:
        return 1.0 if self is RuleTier.STRICT else 0.9


# Returns the label to apply, or None to skip the rule for this row
Refiner = Callable[[re.Match, str], Optional[ItemLabel]]


@dataclass(frozen=True)
class RegexRule:
    pattern: re.Pattern
    label: ItemLabel
    tier: RuleTier
    reason: str
    refine: Optional[Refiner] = None


def has_activity_keywords(name: str) -> bool:
    lowered = name.lower()
    return any(
        lowered.startswith(keyword) or f" {keyword}" in lowered for keyword in ACTIVITY_KEYWORDS
    )


def _equipment_by_name(match: re.Match, name: str) -> Optional[ItemLabel]:
    if EQUIPMENT_KEYWORD in name.lower():
        return ItemLabel.EQUIPMENT
    return ItemLabel.MATERIAL


def _exclude_machinery_prefixes(match: re.Match, name: str) -> Optional[ItemLabel]:
    if match.group(1) in _NON_MATERIAL_PREFIXES:
        return None
    return ItemLabel.MATERIAL


def _commercial_price(match: re.Match, name: str) -> Optional[ItemLabel]:
    if has_activity_keywords(name):
        return ItemLabel.WORK
    return _equipment_by_name(match, name)


class RegexStrategy(ClassificationStrategy):
    """Classifies rows by the family of their normative code.

    Rules are ordered from the most specific code families to generic
    formats; the first rule that matches (and is not vetoed by its refiner)
    decides the label.
    """

    RULES: tuple[RegexRule, ...] = (
        RegexRule(
            re.compile(r"^\d-\d{3}-\d{2,3}$"),
            ItemLabel.LABOR,
            RuleTier.STRICT,
            "Technical part labor code",
        ),
        RegexRule(
            re.compile(r"^(ФСБЦ|ФССЦ|ТССЦ|СЦМ|СЦ|ТЦ|Материал)[А-Я]?[-_]?\d+", re.IGNORECASE),
            ItemLabel.MATERIAL,
            RuleTier.STRICT,
            "Material price book",
            refine=_equipment_by_name,
        ),
        RegexRule(
            re.compile(r"^(01|14)\.\d{1,2}\.\d{1,2}\.\d{1,2}-\d{4}$"),
            ItemLabel.MATERIAL,
            RuleTier.STRICT,
            "FSBC material code",
        ),
        RegexRule(
            re.compile(r"^91\.\d{2}\.\d{2}-\d{3}$"),
            ItemLabel.EQUIPMENT,
            RuleTier.STRICT,
            "Machinery code",
        ),
        RegexRule(
            re.compile(r"^(6\d|08)\.\d{1,2}\.\d{1,2}\.\d{1,2}-\d{4}$"),
            ItemLabel.EQUIPMENT,
            RuleTier.STRICT,
            "Equipment classifier code",
        ),
        RegexRule(
            re.compile(r"^Оборудование", re.IGNORECASE),
            ItemLabel.EQUIPMENT,
            RuleTier.STRICT,
            "Explicit equipment code",
        ),
        RegexRule(
            re.compile(r"^(ГЭСН|ГСН|ФЕР|ТЕР)(р|м|п|r|m)?", re.IGNORECASE),
            ItemLabel.WORK,
            RuleTier.STRICT,
            "State standard work rate",
        ),
        RegexRule(
            re.compile(r"^\d{2}-\d{2}-\d{3}-\d{1,2}$"),
            ItemLabel.WORK,
            RuleTier.LOOSE,
            "Unprefixed work rate format",
        ),
        RegexRule(
            re.compile(r"^(\d{2})\.\d{2}\.\d{2}-\d{3,4}$"),
            ItemLabel.MATERIAL,
            RuleTier.LOOSE,
            "Generic material code format",
            refine=_exclude_machinery_prefixes,
        ),
        RegexRule(
            re.compile(r"^(Прайс|Счет|Сч|КП)[-_]?", re.IGNORECASE),
            ItemLabel.MATERIAL,
            RuleTier.LOOSE,
            "Commercial price reference",
            refine=_commercial_price,
        ),
    )

    @property
    def name(self) -> str:
        return "regex"

    def match(self, code: str, name: str = "") -> Optional[ClassificationResult]:
        code = (code or "").strip()
        if not code:
            return None

        for rule in self.RULES:
            found = rule.pattern.search(code)
            if not found:
                continue
            label = rule.label
            if rule.refine is not None:
                refined = rule.refine(found, name or "")
                if refined is None:
                    continue
                label = refined
            return ClassificationResult(
                label=label,
                confidence=rule.tier.confidence,
                source=rule.tier.value,
            )

        return None

    async def classify_batch(
        self,
        rows: Sequence[ClassificationRow],
        context: Optional[ClassificationContext] = None,
    ) -> dict[int, ClassificationResult]:
        results: dict[int, ClassificationResult] = {}
        for index, row in enumerate(rows):
            result = self.match(row.code, row.name)
            if result is not None:
                results[index] = result
        logger.debug(f"Regex resolved {len(results)} of {len(rows)} rows")
        return results
