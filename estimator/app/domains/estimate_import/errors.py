from typing import Any
from uuid import UUID


class EstimateImportError(Exception):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ImportSessionNotFoundError(EstimateImportError):
    def __init__(self, session_id: UUID):
        super().__init__(
            message=f"Import session {session_id} not found",
            details={"import_session_id": str(session_id)},
        )
        self.session_id = session_id


class ImportCancelledError(EstimateImportError):
    """The session was marked FAILED while rows were still being processed."""

    def __init__(self, session_id: UUID, processed_rows: int):
        super().__init__(
            message=f"Import session {session_id} was cancelled after {processed_rows} rows",
            details={"import_session_id": str(session_id), "processed_rows": processed_rows},
        )
        self.session_id = session_id
        self.processed_rows = processed_rows


class WorkbookFormatError(EstimateImportError):
    def __init__(self, file_name: str, reason: str):
        super().__init__(
            message=f"Cannot read workbook '{file_name}': {reason}",
            details={"file_name": file_name, "reason": reason},
        )
        self.file_name = file_name
        self.reason = reason


class SourceFileMissingError(EstimateImportError):
    def __init__(self, session_id: UUID, source_path: str):
        super().__init__(
            message=f"Source file for import session {session_id} is missing",
            details={"import_session_id": str(session_id), "source_path": source_path},
        )
        self.session_id = session_id
        self.source_path = source_path
