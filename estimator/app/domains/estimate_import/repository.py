import uuid
from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from estimator.app.domains.estimate_import.models import ImportSession, ImportStatus
from estimator.app.infrastructure.datetime_utils import utc_now


class ImportSessionRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, import_session: ImportSession) -> ImportSession:
        self.session.add(import_session)
        await self.session.flush()
        return import_session

    async def get_by_id(self, session_id: uuid.UUID) -> Optional[ImportSession]:
        stmt = select(ImportSession).where(ImportSession.id == session_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_status(self, session_id: uuid.UUID) -> Optional[ImportStatus]:
        """Read the status column directly, bypassing any loaded instance."""
        stmt = select(ImportSession.status).where(ImportSession.id == session_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_estimate(
        self, estimate_id: int, skip: int = 0, limit: int = 100
    ) -> Sequence[ImportSession]:
        stmt = (
            select(ImportSession)
            .where(ImportSession.estimate_id == estimate_id)
            .order_by(ImportSession.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def mark_processing(self, import_session: ImportSession) -> ImportSession:
        import_session.status = ImportStatus.PROCESSING
        import_session.error = None
        import_session.updated_at = utc_now()
        await self.session.flush()
        return import_session

    async def update_stats(
        self, import_session: ImportSession, stats: dict[str, Any]
    ) -> ImportSession:
        import_session.stats = stats
        import_session.updated_at = utc_now()
        await self.session.flush()
        return import_session

    async def mark_completed(
        self, import_session: ImportSession, stats: dict[str, Any]
    ) -> ImportSession:
        import_session.status = ImportStatus.COMPLETED
        import_session.stats = stats
        import_session.completed_at = utc_now()
        import_session.updated_at = utc_now()
        await self.session.flush()
        return import_session

    async def mark_failed(self, import_session: ImportSession, error: str) -> ImportSession:
        import_session.status = ImportStatus.FAILED
        import_session.error = error
        import_session.completed_at = utc_now()
        import_session.updated_at = utc_now()
        await self.session.flush()
        return import_session
