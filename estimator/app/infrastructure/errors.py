"""
Structured error records for observability.

Domain code raises plain exceptions; these models describe a failure with a
stable code, category, severity and recovery guidance so it can be logged
(``to_log_dict``) and queried consistently across the API and the worker.

Provides:
- Error categories matching the engine's failure taxonomy
- Recovery and retry guidance
- A code -> class registry
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from estimator.app.infrastructure.datetime_utils import utc_now


class ErrorCategory(str, PyEnum):
    VALIDATION = "VALIDATION"
    IMPORT = "IMPORT"
    CLASSIFICATION = "CLASSIFICATION"
    PROVIDER = "PROVIDER"
    STRUCTURE = "STRUCTURE"
    SNAPSHOT = "SNAPSHOT"
    INFRASTRUCTURE = "INFRASTRUCTURE"
    CONFIGURATION = "CONFIGURATION"
    UNKNOWN = "UNKNOWN"


class ErrorSeverity(str, PyEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class RecoveryAction(str, PyEnum):
    RETRY = "RETRY"
    SKIP = "SKIP"
    MANUAL_REVIEW = "MANUAL_REVIEW"
    MANUAL_INTERVENTION = "MANUAL_INTERVENTION"
    RESTART = "RESTART"
    NONE = "NONE"


class StructuredError(BaseModel):
    """
    Structured error with full context for debugging and observability.

    Designed to be understandable without reading code, queryable for
    patterns and actionable through its recovery guidance.
    """

    code: str = Field(description="Unique error code for identification")
    category: ErrorCategory
    severity: ErrorSeverity
    message: str = Field(description="Human-readable error message")
    details: dict[str, Any] = Field(default_factory=dict, description="Additional error context")

    correlation_id: str | None = None
    job_id: UUID | None = None
    estimate_id: int | None = None
    import_session_id: UUID | None = None

    recovery_action: RecoveryAction = RecoveryAction.NONE
    recovery_hint: str | None = None
    is_retryable: bool = False
    retry_count: int = 0
    max_retries: int = 3

    occurred_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(from_attributes=True)

    def to_log_dict(self) -> dict[str, Any]:
        return {
            "error_code": self.code,
            "error_category": self.category.value,
            "error_severity": self.severity.value,
            "error_message": self.message,
            "error_details": self.details,
            "correlation_id": self.correlation_id,
            "job_id": str(self.job_id) if self.job_id else None,
            "estimate_id": self.estimate_id,
            "import_session_id": (
                str(self.import_session_id) if self.import_session_id else None
            ),
            "recovery_action": self.recovery_action.value,
            "is_retryable": self.is_retryable,
        }


class ClassificationDegradedError(StructuredError):
    """A strategy failed or was inconclusive; rows fall through to the next one."""

    def __init__(
        self,
        strategy: str,
        row_count: int,
        reason: str,
        sample_codes: list[str] | None = None,
        correlation_id: str | None = None,
    ):
        super().__init__(
            code="CLASSIFICATION_STRATEGY_DEGRADED",
            category=ErrorCategory.CLASSIFICATION,
            severity=ErrorSeverity.LOW,
            message=f"Strategy {strategy} resolved nothing for {row_count} rows: {reason}",
            details={
                "strategy": strategy,
                "row_count": row_count,
                "reason": reason,
                "sample_codes": sample_codes or [],
            },
            correlation_id=correlation_id,
            recovery_action=RecoveryAction.SKIP,
            recovery_hint="Rows fall through to the next strategy or the default label",
        )


class ProviderFailureError(StructuredError):
    """The AI classification provider failed, timed out or answered garbage."""

    def __init__(
        self,
        provider: str,
        reason: str,
        batch_size: int = 0,
        correlation_id: str | None = None,
    ):
        super().__init__(
            code="PROVIDER_FAILURE",
            category=ErrorCategory.PROVIDER,
            severity=ErrorSeverity.MEDIUM,
            message=f"AI provider {provider} failed: {reason}",
            details={
                "provider": provider,
                "reason": reason,
                "batch_size": batch_size,
            },
            correlation_id=correlation_id,
            recovery_action=RecoveryAction.MANUAL_REVIEW,
            recovery_hint="Affected rows are marked unclassified and surfaced for review",
        )


class StructureViolationError(StructuredError):
    """A mutation would break the section tree invariants."""

    def __init__(
        self,
        estimate_id: int,
        reason: str,
        section_id: int | None = None,
        correlation_id: str | None = None,
    ):
        super().__init__(
            code="STRUCTURE_INVARIANT_VIOLATION",
            category=ErrorCategory.STRUCTURE,
            severity=ErrorSeverity.LOW,
            message=f"Rejected structural change: {reason}",
            details={
                "section_id": section_id,
                "reason": reason,
            },
            estimate_id=estimate_id,
            correlation_id=correlation_id,
            recovery_action=RecoveryAction.NONE,
            recovery_hint="Choose a parent outside the moved section's subtree",
        )


class SnapshotFailureError(StructuredError):
    """Building or writing a structure snapshot failed."""

    def __init__(
        self,
        estimate_id: int,
        reason: str,
        section_count: int | None = None,
        item_count: int | None = None,
        job_id: UUID | None = None,
        correlation_id: str | None = None,
    ):
        super().__init__(
            code="SNAPSHOT_GENERATION_FAILURE",
            category=ErrorCategory.SNAPSHOT,
            severity=ErrorSeverity.MEDIUM,
            message=f"Snapshot generation failed for estimate {estimate_id}: {reason}",
            details={
                "reason": reason,
                "section_count": section_count,
                "item_count": item_count,
            },
            estimate_id=estimate_id,
            job_id=job_id,
            correlation_id=correlation_id,
            recovery_action=RecoveryAction.RETRY,
            recovery_hint="The previous snapshot stays valid; the job is retried",
            is_retryable=True,
        )


class ImportAbortedError(StructuredError):
    """An import session stopped before all rows were processed."""

    def __init__(
        self,
        import_session_id: UUID,
        estimate_id: int,
        reason: str,
        processed_rows: int = 0,
        correlation_id: str | None = None,
    ):
        super().__init__(
            code="IMPORT_ABORTED",
            category=ErrorCategory.IMPORT,
            severity=ErrorSeverity.MEDIUM,
            message=f"Import aborted: {reason}",
            details={
                "reason": reason,
                "processed_rows": processed_rows,
            },
            import_session_id=import_session_id,
            estimate_id=estimate_id,
            correlation_id=correlation_id,
            recovery_action=RecoveryAction.MANUAL_INTERVENTION,
            recovery_hint="Check the uploaded file and start a new import session",
        )


class JobCrashError(StructuredError):
    """A job handler raised unexpectedly."""

    def __init__(
        self,
        job_id: UUID,
        job_type: str,
        exception: str,
        stack_trace: str | None = None,
        correlation_id: str | None = None,
    ):
        super().__init__(
            code="JOB_CRASH",
            category=ErrorCategory.INFRASTRUCTURE,
            severity=ErrorSeverity.HIGH,
            message=f"Job {job_type} crashed unexpectedly",
            details={
                "job_type": job_type,
                "exception": exception,
                "stack_trace": stack_trace,
            },
            job_id=job_id,
            correlation_id=correlation_id,
            recovery_action=RecoveryAction.RESTART,
            recovery_hint="Job will be automatically restarted by worker recovery",
            is_retryable=True,
        )


class JobTimeoutError(StructuredError):
    def __init__(
        self,
        job_id: UUID,
        job_type: str,
        timeout_minutes: int,
        correlation_id: str | None = None,
    ):
        super().__init__(
            code="JOB_TIMEOUT",
            category=ErrorCategory.INFRASTRUCTURE,
            severity=ErrorSeverity.MEDIUM,
            message=f"Job {job_type} timed out after {timeout_minutes} minutes",
            details={
                "job_type": job_type,
                "timeout_minutes": timeout_minutes,
            },
            job_id=job_id,
            correlation_id=correlation_id,
            recovery_action=RecoveryAction.RESTART,
            recovery_hint="Job will be reset and can be retried",
            is_retryable=True,
        )


ERROR_CODE_MAP: dict[str, type[StructuredError]] = {
    "CLASSIFICATION_STRATEGY_DEGRADED": ClassificationDegradedError,
    "PROVIDER_FAILURE": ProviderFailureError,
    "STRUCTURE_INVARIANT_VIOLATION": StructureViolationError,
    "SNAPSHOT_GENERATION_FAILURE": SnapshotFailureError,
    "IMPORT_ABORTED": ImportAbortedError,
    "JOB_CRASH": JobCrashError,
    "JOB_TIMEOUT": JobTimeoutError,
}


def get_error_by_code(code: str) -> type[StructuredError] | None:
    return ERROR_CODE_MAP.get(code)
