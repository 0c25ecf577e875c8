from estimator.app.domains.classification.ai_strategy import AIStrategy, extract_json
from estimator.app.domains.classification.base import ClassificationStrategy
from estimator.app.domains.classification.llm_provider import (
    LLMProvider,
    LLMProviderError,
    OpenAICompatibleProvider,
)
from estimator.app.domains.classification.models import NormativeRate
from estimator.app.domains.classification.normative_strategy import NormativeDatabaseStrategy
from estimator.app.domains.classification.pipeline import (
    ClassificationPipeline,
    create_classification_pipeline,
)
from estimator.app.domains.classification.regex_strategy import RegexStrategy
from estimator.app.domains.classification.repository import NormativeRepository
from estimator.app.domains.classification.schemas import (
    UNCLASSIFIED_SOURCE,
    ClassificationContext,
    ClassificationResult,
    ClassificationRow,
    ClassificationSummary,
    ItemLabel,
    normalize_label,
)

__all__ = [
    "ItemLabel",
    "UNCLASSIFIED_SOURCE",
    "normalize_label",
    "ClassificationRow",
    "ClassificationResult",
    "ClassificationContext",
    "ClassificationSummary",
    "ClassificationStrategy",
    "RegexStrategy",
    "NormativeDatabaseStrategy",
    "NormativeRate",
    "NormativeRepository",
    "AIStrategy",
    "extract_json",
    "LLMProvider",
    "LLMProviderError",
    "OpenAICompatibleProvider",
    "ClassificationPipeline",
    "create_classification_pipeline",
]
