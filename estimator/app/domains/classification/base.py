from abc import ABC, abstractmethod
from typing import Optional, Sequence

from estimator.app.domains.classification.schemas import (
    ClassificationContext,
    ClassificationResult,
    ClassificationRow,
)


class ClassificationStrategy(ABC):
    """One tier of the classification pipeline."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Strategy name for logging and identification."""
        ...

    @abstractmethod
    async def classify_batch(
        self,
        rows: Sequence[ClassificationRow],
        context: Optional[ClassificationContext] = None,
    ) -> dict[int, ClassificationResult]:
        """
        Classify an ordered batch of rows.

        Returns a sparse mapping of position in ``rows`` to result; rows the
        strategy cannot resolve are simply absent.
        """
        ...

    async def classify(
        self,
        code: str,
        name: str,
        unit: Optional[str] = None,
        price: Optional[float] = None,
    ) -> Optional[ClassificationResult]:
        row = ClassificationRow(code=code or "", name=name or "", unit=unit, price=price)
        results = await self.classify_batch([row])
        return results.get(0)
