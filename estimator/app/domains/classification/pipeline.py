import time
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from estimator.app.config import Settings
from estimator.app.domains.classification.ai_strategy import AIStrategy
from estimator.app.domains.classification.base import ClassificationStrategy
from estimator.app.domains.classification.llm_provider import (
    LLMProvider,
    OpenAICompatibleProvider,
)
from estimator.app.domains.classification.normative_strategy import NormativeDatabaseStrategy
from estimator.app.domains.classification.regex_strategy import RegexStrategy
from estimator.app.domains.classification.repository import NormativeRepository
from estimator.app.domains.classification.schemas import (
    ClassificationContext,
    ClassificationResult,
    ClassificationRow,
    ClassificationSummary,
)
from estimator.app.infrastructure.errors import ClassificationDegradedError
from estimator.app.logging_config import get_logger

logger = get_logger("app.domains.classification.pipeline")

DEFAULT_CHUNK_SIZE = 200


class ClassificationPipeline:
    """Resolves a label for every row by trying strategies in priority order.

    Each strategy only sees the rows that no earlier strategy resolved, so a
    higher-priority result is never overridden. Rows still unresolved at the
    end get the ``unclassified`` default. A failing strategy counts as having
    resolved nothing.
    """

    def __init__(
        self,
        strategies: Sequence[ClassificationStrategy],
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        self.strategies = list(strategies)
        self.chunk_size = chunk_size

    @property
    def strategy_names(self) -> list[str]:
        return [strategy.name for strategy in self.strategies]

    async def classify_batch(
        self,
        rows: Sequence[ClassificationRow],
        context: Optional[ClassificationContext] = None,
    ) -> dict[int, ClassificationResult]:
        if context is None:
            context = ClassificationContext()

        results: dict[int, ClassificationResult] = {}
        for offset in range(0, len(rows), self.chunk_size):
            chunk = rows[offset : offset + self.chunk_size]
            chunk_results = await self.classify_chunk(chunk, context)
            for index, result in chunk_results.items():
                results[offset + index] = result
        return results

    async def classify_chunk(
        self,
        rows: Sequence[ClassificationRow],
        context: ClassificationContext,
    ) -> dict[int, ClassificationResult]:
        resolved: dict[int, ClassificationResult] = {}
        pending = list(range(len(rows)))

        for strategy in self.strategies:
            if not pending:
                break

            subset = [rows[index] for index in pending]
            found = await self._run_strategy(strategy, subset, context)

            for local_index, result in found.items():
                if 0 <= local_index < len(pending):
                    resolved[pending[local_index]] = result
            pending = [index for index in pending if index not in resolved]

        if pending:
            logger.info(f"{len(pending)} of {len(rows)} rows left unclassified")
        default = ClassificationResult.unclassified()
        for index in pending:
            resolved[index] = default

        return resolved

    async def _run_strategy(
        self,
        strategy: ClassificationStrategy,
        rows: list[ClassificationRow],
        context: ClassificationContext,
    ) -> dict[int, ClassificationResult]:
        try:
            return await strategy.classify_batch(rows, context)
        except Exception as e:
            error = ClassificationDegradedError(
                strategy=strategy.name,
                row_count=len(rows),
                reason=str(e),
                sample_codes=[row.code for row in rows[:5]],
            )
            logger.warning(error.message, extra={"extra_data": error.to_log_dict()})
            return {}

    def summarize(
        self,
        results: dict[int, ClassificationResult],
        duration_ms: float = 0.0,
    ) -> ClassificationSummary:
        by_source: dict[str, int] = {}
        by_label: dict[str, int] = {}
        needs_review = 0
        for result in results.values():
            by_source[result.source] = by_source.get(result.source, 0) + 1
            by_label[result.label.value] = by_label.get(result.label.value, 0) + 1
            if result.is_unclassified:
                needs_review += 1

        return ClassificationSummary(
            total_rows=len(results),
            by_source=by_source,
            by_label=by_label,
            needs_review=needs_review,
            duration_ms=duration_ms,
        )

    async def classify_with_summary(
        self, rows: Sequence[ClassificationRow]
    ) -> tuple[dict[int, ClassificationResult], ClassificationSummary]:
        start_time = time.time()
        results = await self.classify_batch(rows)
        duration_ms = (time.time() - start_time) * 1000
        summary = self.summarize(results, duration_ms)
        logger.info(
            f"Classified {summary.total_rows} rows in {duration_ms:.2f}ms: "
            f"{summary.by_source} ({summary.needs_review} need review)"
        )
        return results, summary


def create_classification_pipeline(
    settings: Settings,
    session: AsyncSession,
    provider: Optional[LLMProvider] = None,
) -> ClassificationPipeline:
    strategies: list[ClassificationStrategy] = [
        RegexStrategy(),
        NormativeDatabaseStrategy(NormativeRepository(session)),
    ]

    if settings.ai_classification_enabled:
        if provider is None and settings.openai_api_key:
            provider = OpenAICompatibleProvider(
                api_key=settings.openai_api_key,
                api_base_url=settings.openai_api_base_url,
                model=settings.openai_model,
                timeout_seconds=settings.ai_timeout_seconds,
            )
        if provider is not None:
            strategies.append(AIStrategy(provider))
        else:
            logger.warning("AI classification enabled but no provider configured")

    return ClassificationPipeline(strategies, chunk_size=settings.classification_chunk_size)
