from typing import Optional, Sequence

from estimator.app.domains.classification.base import ClassificationStrategy
from estimator.app.domains.classification.repository import NormativeRepository
from estimator.app.domains.classification.schemas import (
    ClassificationContext,
    ClassificationResult,
    ClassificationRow,
    ItemLabel,
    normalize_label,
)
from estimator.app.logging_config import get_logger

logger = get_logger("app.domains.classification.normative_strategy")

NORMATIVE_SOURCE = "normative_db"


class NormativeDatabaseStrategy(ClassificationStrategy):
    """Exact-match lookup of trimmed codes against the normative reference table.

    Each chunk costs at most one bulk query; codes already looked up during the
    same pipeline invocation are answered from ``context.normative_memo``.
    """

    def __init__(self, repository: NormativeRepository):
        self.repository = repository

    @property
    def name(self) -> str:
        return "normative_db"

    async def classify_batch(
        self,
        rows: Sequence[ClassificationRow],
        context: Optional[ClassificationContext] = None,
    ) -> dict[int, ClassificationResult]:
        if context is None:
            context = ClassificationContext()

        codes = [row.trimmed_code for row in rows]
        missing = {code for code in codes if code and code not in context.normative_memo}

        if missing:
            found = await self.repository.bulk_lookup_by_code(missing)
            context.lookups_performed += 1
            for entry in found:
                context.normative_memo[entry["code"]] = normalize_label(entry["type"])
            for code in missing:
                context.normative_memo.setdefault(code, None)
            logger.debug(f"Normative lookup: {len(found)} hits for {len(missing)} codes")

        results: dict[int, ClassificationResult] = {}
        for index, code in enumerate(codes):
            label: Optional[ItemLabel] = context.normative_memo.get(code) if code else None
            if label is not None:
                results[index] = ClassificationResult(
                    label=label,
                    confidence=1.0,
                    source=NORMATIVE_SOURCE,
                )
        return results
