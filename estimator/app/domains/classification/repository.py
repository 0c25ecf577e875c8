from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from estimator.app.domains.classification.models import NormativeRate


class NormativeRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def bulk_lookup_by_code(self, codes: Iterable[str]) -> list[dict[str, str]]:
        """Return ``{"code", "type"}`` rows for every known code in one query."""
        code_set = {code for code in codes if code}
        if not code_set:
            return []
        stmt = select(NormativeRate.code, NormativeRate.resource_type).where(
            NormativeRate.code.in_(code_set)
        )
        result = await self.session.execute(stmt)
        return [{"code": row.code, "type": row.resource_type} for row in result.all()]

    async def create_batch(self, rates: list[NormativeRate]) -> list[NormativeRate]:
        self.session.add_all(rates)
        await self.session.flush()
        return rates
