from estimator.app.domains.estimate_import.errors import (
    EstimateImportError,
    ImportCancelledError,
    ImportSessionNotFoundError,
    SourceFileMissingError,
    WorkbookFormatError,
)
from estimator.app.domains.estimate_import.models import ImportSession, ImportStatus
from estimator.app.domains.estimate_import.reader import (
    ImportRow,
    ParsedWorkbook,
    RowKind,
    WorkbookReader,
)
from estimator.app.domains.estimate_import.repository import ImportSessionRepository
from estimator.app.domains.estimate_import.schemas import (
    ImportSessionResponse,
    ImportStartResponse,
    ImportStats,
)
from estimator.app.domains.estimate_import.service import EstimateImportService
from estimator.app.domains.estimate_import.xml_reader import XmlEstimateReader

__all__ = [
    "ImportSession",
    "ImportStatus",
    "ImportSessionRepository",
    "ImportSessionResponse",
    "ImportStartResponse",
    "ImportStats",
    "ImportRow",
    "RowKind",
    "ParsedWorkbook",
    "WorkbookReader",
    "XmlEstimateReader",
    "EstimateImportService",
    "EstimateImportError",
    "ImportCancelledError",
    "ImportSessionNotFoundError",
    "SourceFileMissingError",
    "WorkbookFormatError",
]
