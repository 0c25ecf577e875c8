import json
import re
import time
from typing import Any, Optional, Sequence

from estimator.app.domains.classification.base import ClassificationStrategy
from estimator.app.domains.classification.llm_provider import LLMProvider
from estimator.app.domains.classification.schemas import (
    ClassificationContext,
    ClassificationResult,
    ClassificationRow,
    normalize_label,
)
from estimator.app.infrastructure.errors import ProviderFailureError
from estimator.app.logging_config import get_logger

logger = get_logger("app.domains.classification.ai_strategy")

AI_SOURCE = "ai_llm"
AI_CONFIDENCE = 0.85

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*", re.IGNORECASE | re.MULTILINE)
_FENCE_CLOSE = re.compile(r"```\s*$", re.MULTILINE)


def extract_json(text: str) -> str:
    """Return the first balanced ``{...}`` span of ``text``.

    Markdown code fences are stripped first. When no object is found the
    cleaned text is returned unchanged and left for the JSON parser to reject.
    """
    cleaned = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", text)).strip()

    start = cleaned.find("{")
    if start == -1:
        return cleaned

    depth = 0
    in_string = False
    escaped = False
    for position in range(start, len(cleaned)):
        char = cleaned[position]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return cleaned[start : position + 1]

    return cleaned


class AIStrategy(ClassificationStrategy):
    SYSTEM_PROMPT = (
        "You are a precise JSON-only classifier. "
        "Return only valid JSON objects without markdown formatting."
    )

    USER_PROMPT_TEMPLATE = """Classify the following construction estimate items into types.

Types:
- 'work': Labor/Work (монтаж, установка, укладка, устройство)
- 'material': Materials (бетон, кирпич, арматура, краска)
- 'equipment': Machinery/Equipment (экскаватор, кран, бетономешалка)
- 'labor': Pure labor costs (трудозатраты)

Items to classify:
{items}

IMPORTANT: Return ONLY a valid JSON object, no markdown, no explanations.
Format: {{"0": "work", "1": "material", "2": "equipment"}}"""

    def __init__(
        self,
        provider: LLMProvider,
        temperature: float = 0.1,
        max_tokens: int = 2000,
    ):
        self.provider = provider
        self.temperature = temperature
        self.max_tokens = max_tokens

    @property
    def name(self) -> str:
        return "ai"

    async def classify_batch(
        self,
        rows: Sequence[ClassificationRow],
        context: Optional[ClassificationContext] = None,
    ) -> dict[int, ClassificationResult]:
        if not rows:
            return {}

        try:
            return await self._classify_unique(rows)
        except Exception as e:
            error = ProviderFailureError(
                provider=self.provider.name, reason=str(e), batch_size=len(rows)
            )
            logger.warning(error.message, extra={"extra_data": error.to_log_dict()})
            return {}

    async def _classify_unique(
        self, rows: Sequence[ClassificationRow]
    ) -> dict[int, ClassificationResult]:
        # Rows with the same name and unit share one prompt line
        groups: dict[tuple[str, str], list[int]] = {}
        for index, row in enumerate(rows):
            key = (row.name.strip().lower(), (row.unit or "").strip().lower())
            groups.setdefault(key, []).append(index)

        prompt_groups = list(groups.values())
        lines = []
        for local_id, indices in enumerate(prompt_groups):
            row = rows[indices[0]]
            lines.append(
                f"ID:{local_id} | Code:{row.code} | Name:{row.name} | Unit:{row.unit or ''}"
            )

        messages = [
            {"role": "system", "content": self.SYSTEM_PROMPT},
            {
                "role": "user",
                "content": self.USER_PROMPT_TEMPLATE.format(items="\n".join(lines)),
            },
        ]

        start_time = time.time()
        response = await self.provider.chat(
            messages, temperature=self.temperature, max_tokens=self.max_tokens
        )
        duration_ms = (time.time() - start_time) * 1000

        content = (response or {}).get("content") or ""
        if not content.strip():
            logger.warning("Empty response from AI provider")
            return {}

        labels = self._parse_labels(content)
        if labels is None:
            return {}

        results: dict[int, ClassificationResult] = {}
        for local_key, value in labels.items():
            try:
                local_id = int(local_key)
            except (TypeError, ValueError):
                continue
            if local_id < 0 or local_id >= len(prompt_groups):
                continue
            if value is None or value == "":
                continue
            result = ClassificationResult(
                label=normalize_label(value),
                confidence=AI_CONFIDENCE,
                source=AI_SOURCE,
            )
            for index in prompt_groups[local_id]:
                results[index] = result

        logger.info(
            f"AI classified {len(results)} of {len(rows)} rows "
            f"({len(prompt_groups)} unique) in {duration_ms:.0f}ms"
        )
        return results

    def _parse_labels(self, content: str) -> Optional[dict[str, Any]]:
        try:
            parsed = json.loads(extract_json(content))
        except json.JSONDecodeError as e:
            logger.warning(f"Invalid JSON response from AI provider: {e}")
            return None

        if not isinstance(parsed, dict):
            logger.warning(f"AI response is not a JSON object: {type(parsed).__name__}")
            return None
        return parsed
