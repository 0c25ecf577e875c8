from typing import Any


class EstimateStructureError(Exception):
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


class EstimateNotFoundError(EstimateStructureError):
    def __init__(self, estimate_id: int):
        super().__init__(
            message=f"Estimate {estimate_id} not found",
            details={"estimate_id": estimate_id},
        )
        self.estimate_id = estimate_id


class SectionNotFoundError(EstimateStructureError):
    def __init__(self, section_id: int, estimate_id: int | None = None):
        super().__init__(
            message=f"Section {section_id} not found",
            details={"section_id": section_id, "estimate_id": estimate_id},
        )
        self.section_id = section_id
        self.estimate_id = estimate_id


class StructureInvariantError(EstimateStructureError):
    """A requested mutation would break the section tree; nothing was changed."""

    def __init__(self, estimate_id: int, reason: str, section_id: int | None = None):
        super().__init__(
            message=f"Invalid structural change for estimate {estimate_id}: {reason}",
            details={
                "estimate_id": estimate_id,
                "section_id": section_id,
                "reason": reason,
            },
        )
        self.estimate_id = estimate_id
        self.section_id = section_id
        self.reason = reason
