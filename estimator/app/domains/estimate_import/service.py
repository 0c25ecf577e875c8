import time
import uuid
from pathlib import PurePath
from typing import Optional, Sequence
from uuid import UUID

from estimator.app.domains.classification.pipeline import ClassificationPipeline
from estimator.app.domains.classification.schemas import (
    ClassificationContext,
    ClassificationRow,
)
from estimator.app.domains.estimate.errors import EstimateNotFoundError
from estimator.app.domains.estimate.models import EstimateItem, EstimateSection
from estimator.app.domains.estimate.repository import EstimateStructureRepository
from estimator.app.domains.estimate.schemas import SectionCreate
from estimator.app.domains.estimate.service import EstimateSectionService
from estimator.app.domains.estimate_import.errors import (
    ImportCancelledError,
    ImportSessionNotFoundError,
    SourceFileMissingError,
    WorkbookFormatError,
)
from estimator.app.domains.estimate_import.models import ImportSession, ImportStatus
from estimator.app.domains.estimate_import.reader import (
    ImportRow,
    WorkbookReader,
)
from estimator.app.domains.estimate_import.repository import ImportSessionRepository
from estimator.app.domains.estimate_import.schemas import ImportStats
from estimator.app.domains.estimate_import.xml_reader import (
    XML_EXTENSIONS,
    XmlEstimateReader,
    looks_like_xml,
)
from estimator.app.domains.job.models import Job
from estimator.app.domains.job.schemas import ImportClassifyJobCreate, SnapshotJobCreate
from estimator.app.domains.job.service import JobService
from estimator.app.infrastructure.storage import StorageService
from estimator.app.logging_config import get_logger

logger = get_logger("app.domains.estimate_import.service")

WORKBOOK_EXTENSIONS = {".xlsx", ".xlsm"}
SUPPORTED_EXTENSIONS = WORKBOOK_EXTENSIONS | XML_EXTENSIONS
CANCELLED_MESSAGE = "Cancelled by user"


class EstimateImportService:
    """
    Import of a workbook or an XML estimate export into an estimate.

    ``start_import`` stores the upload and queues an IMPORT_CLASSIFY job;
    ``run_import`` is executed by that job. Rows are processed in bounded
    chunks: each chunk is classified, written and committed, and the session
    status is re-read before the next chunk so a cancellation (session marked
    FAILED) stops the import between chunks. A cancellation that lands during
    the last chunk is honoured as well: the session is never marked COMPLETED
    over it.
    """

    def __init__(
        self,
        session_repo: ImportSessionRepository,
        structure_repo: EstimateStructureRepository,
        storage: StorageService,
        job_service: Optional[JobService] = None,
        pipeline: Optional[ClassificationPipeline] = None,
        reader: Optional[WorkbookReader] = None,
        xml_reader: Optional[XmlEstimateReader] = None,
        chunk_size: int = 200,
    ):
        self.session_repo = session_repo
        self.structure_repo = structure_repo
        self.storage = storage
        self.job_service = job_service
        self.pipeline = pipeline
        self.reader = reader or WorkbookReader()
        self.xml_reader = xml_reader or XmlEstimateReader()
        self.chunk_size = chunk_size
        self.enqueued_jobs: list[Job] = []

    async def start_import(
        self,
        estimate_id: int,
        file_name: str,
        data: bytes,
        correlation_id: Optional[str] = None,
    ) -> tuple[ImportSession, Optional[Job]]:
        estimate = await self.structure_repo.get_estimate(estimate_id)
        if estimate is None:
            raise EstimateNotFoundError(estimate_id)

        suffix = PurePath(file_name).suffix.lower()
        if suffix not in SUPPORTED_EXTENSIONS:
            raise WorkbookFormatError(
                file_name,
                f"unsupported file type '{suffix or file_name}', expected .xlsx or .xml",
            )
        if not data:
            raise WorkbookFormatError(file_name, "file is empty")

        session_id = uuid.uuid4()
        source_path = self.storage.upload_import_source(estimate_id, session_id, file_name, data)

        import_session = await self.session_repo.create(
            ImportSession(
                id=session_id,
                estimate_id=estimate_id,
                file_name=file_name,
                source_path=source_path,
                status=ImportStatus.PENDING,
            )
        )

        job = None
        if self.job_service is not None:
            job = await self.job_service.create_import_job(
                ImportClassifyJobCreate(
                    estimate_id=estimate_id,
                    import_session_id=session_id,
                    correlation_id=correlation_id,
                )
            )
            self.enqueued_jobs.append(job)

        logger.info(f"Started import session {session_id} for estimate {estimate_id}")
        return import_session, job

    async def get_session(self, session_id: UUID) -> ImportSession:
        import_session = await self.session_repo.get_by_id(session_id)
        if import_session is None:
            raise ImportSessionNotFoundError(session_id)
        return import_session

    async def list_sessions(self, estimate_id: int) -> Sequence[ImportSession]:
        return await self.session_repo.list_by_estimate(estimate_id)

    async def cancel_import(self, session_id: UUID) -> ImportSession:
        import_session = await self.get_session(session_id)
        if import_session.is_terminal:
            return import_session
        await self.session_repo.mark_failed(import_session, CANCELLED_MESSAGE)
        logger.info(f"Import session {session_id} cancelled")
        return import_session

    async def mark_failed(self, session_id: UUID, error: str) -> None:
        import_session = await self.session_repo.get_by_id(session_id)
        if import_session is not None and not import_session.is_terminal:
            await self.session_repo.mark_failed(import_session, error)

    async def run_import(self, session_id: UUID) -> ImportStats:
        if self.pipeline is None:
            raise RuntimeError("run_import requires a classification pipeline")

        import_session = await self.get_session(session_id)
        if import_session.status == ImportStatus.FAILED:
            raise ImportCancelledError(session_id, 0)
        if import_session.status == ImportStatus.COMPLETED:
            return ImportStats(**(import_session.stats or {}))

        start_time = time.time()
        estimate_id = import_session.estimate_id
        await self.session_repo.mark_processing(import_session)
        await self.session_repo.session.commit()

        data = self.storage.get(import_session.source_path)
        if data is None:
            raise SourceFileMissingError(session_id, import_session.source_path)

        reader = (
            self.xml_reader if looks_like_xml(import_session.file_name, data) else self.reader
        )
        parsed = reader.read(data, import_session.file_name)
        stats = ImportStats(total_rows=len(parsed.rows), skipped_rows=parsed.skipped_rows)

        sections = EstimateSectionService(self.structure_repo)
        context = ClassificationContext()
        next_position = await self.structure_repo.next_position_number(estimate_id)
        # Open sections from the top level down to the most recent one
        section_stack: list[EstimateSection] = []

        for offset in range(0, len(parsed.rows), self.chunk_size):
            status = await self.session_repo.get_status(session_id)
            if status == ImportStatus.FAILED:
                logger.info(
                    f"Import session {session_id} cancelled after {stats.processed_rows} rows"
                )
                raise ImportCancelledError(session_id, stats.processed_rows)

            chunk = parsed.rows[offset : offset + self.chunk_size]
            item_rows = [row for row in chunk if not row.is_section]
            results = await self.pipeline.classify_batch(
                [self._to_classification_row(row) for row in item_rows], context
            )

            new_items: list[EstimateItem] = []
            item_index = 0
            for row in chunk:
                if row.is_section:
                    depth = min(row.level or 0, len(section_stack))
                    parent = section_stack[depth - 1] if depth else None
                    created = await sections.create_section(
                        estimate_id,
                        SectionCreate(
                            name=row.name[:1000],
                            parent_section_id=parent.id if parent else None,
                        ),
                    )
                    del section_stack[depth:]
                    section_stack.append(created)
                    stats.sections_created += 1
                    continue

                result = results[item_index]
                item_index += 1
                owner = self._owner_section(section_stack, row.level)
                new_items.append(
                    EstimateItem(
                        estimate_id=estimate_id,
                        section_id=owner.id if owner else None,
                        position_number=next_position,
                        code=row.code,
                        name=row.name,
                        unit=row.unit,
                        quantity=row.quantity if row.quantity is not None else 0,
                        unit_price=row.price,
                        classification_label=result.label.value,
                        classification_confidence=result.confidence,
                        classification_source=result.source,
                    )
                )
                next_position += 1
                stats.by_source[result.source] = stats.by_source.get(result.source, 0) + 1
                stats.by_label[result.label.value] = stats.by_label.get(result.label.value, 0) + 1
                if result.is_unclassified:
                    stats.needs_review += 1

            if new_items:
                await self.structure_repo.create_items_batch(new_items)
            stats.items_created += len(new_items)
            stats.processed_rows += len(chunk)
            stats.duration_ms = (time.time() - start_time) * 1000

            await self.session_repo.update_stats(import_session, stats.model_dump())
            await self.session_repo.session.commit()
            logger.debug(
                f"Import session {session_id}: {stats.processed_rows}/{stats.total_rows} rows"
            )

        status = await self.session_repo.get_status(session_id)
        if status == ImportStatus.FAILED:
            logger.info(
                f"Import session {session_id} cancelled during its last chunk, "
                f"{stats.processed_rows} rows kept"
            )
            raise ImportCancelledError(session_id, stats.processed_rows)

        stats.duration_ms = (time.time() - start_time) * 1000
        await self.session_repo.mark_completed(import_session, stats.model_dump())
        if self.job_service is not None:
            snapshot_job = await self.job_service.enqueue_snapshot(
                SnapshotJobCreate(estimate_id=estimate_id, reason="import_completed")
            )
            self.enqueued_jobs.append(snapshot_job)
        await self.session_repo.session.commit()

        logger.info(
            f"Import session {session_id} completed: {stats.items_created} items, "
            f"{stats.sections_created} sections, {stats.needs_review} need review "
            f"in {stats.duration_ms:.0f}ms"
        )
        return stats

    @staticmethod
    def _owner_section(
        section_stack: list[EstimateSection], level: Optional[int]
    ) -> Optional[EstimateSection]:
        if level is None:
            return section_stack[-1] if section_stack else None
        depth = min(level, len(section_stack))
        return section_stack[depth - 1] if depth else None

    @staticmethod
    def _to_classification_row(row: ImportRow) -> ClassificationRow:
        return ClassificationRow(
            code=row.code or "",
            name=row.name,
            unit=row.unit,
            price=float(row.price) if row.price is not None else None,
        )
