from estimator.app.domains.estimate.errors import (
    EstimateNotFoundError,
    EstimateStructureError,
    SectionNotFoundError,
    StructureInvariantError,
)
from estimator.app.domains.estimate.models import (
    Estimate,
    EstimateItem,
    EstimateItemResource,
    EstimateItemTotal,
    EstimateItemWork,
    EstimateSection,
    MeasurementUnit,
    WorkType,
)
from estimator.app.domains.estimate.numbering import (
    SectionEvent,
    SectionNumberingEngine,
    StructuralChange,
)
from estimator.app.domains.estimate.repository import EstimateStructureRepository
from estimator.app.domains.estimate.schemas import (
    EstimateCreate,
    EstimateResponse,
    ItemCreate,
    ItemResponse,
    NumberingReport,
    SectionCreate,
    SectionResponse,
    SectionUpdate,
)
from estimator.app.domains.estimate.service import EstimateSectionService

__all__ = [
    "Estimate",
    "EstimateSection",
    "EstimateItem",
    "EstimateItemResource",
    "EstimateItemTotal",
    "EstimateItemWork",
    "WorkType",
    "MeasurementUnit",
    "EstimateStructureRepository",
    "SectionNumberingEngine",
    "SectionEvent",
    "StructuralChange",
    "EstimateSectionService",
    "EstimateCreate",
    "EstimateResponse",
    "SectionCreate",
    "SectionUpdate",
    "SectionResponse",
    "ItemCreate",
    "ItemResponse",
    "NumberingReport",
    "EstimateStructureError",
    "EstimateNotFoundError",
    "SectionNotFoundError",
    "StructureInvariantError",
]
