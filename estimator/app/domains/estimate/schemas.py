from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from estimator.app.domains.classification.schemas import ItemLabel


class EstimateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=500)
    organization_id: Optional[int] = None


class EstimateResponse(BaseModel):
    id: int
    organization_id: Optional[int] = None
    name: str
    structure_cache_path: Optional[str] = None
    snapshot_generated_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SectionCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=1000)
    parent_section_id: Optional[int] = None
    sort_order: Optional[int] = Field(default=None, ge=0)


class SectionUpdate(BaseModel):
    """Partial update. ``parent_section_id`` is only applied when present in the payload."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=1000)
    parent_section_id: Optional[int] = None
    sort_order: Optional[int] = Field(default=None, ge=0)


class SectionResponse(BaseModel):
    id: int
    estimate_id: int
    parent_section_id: Optional[int] = None
    section_number: str
    sort_order: int
    name: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ItemCreate(BaseModel):
    name: str
    code: Optional[str] = None
    unit: Optional[str] = None
    quantity: Decimal = Decimal("0")
    unit_price: Optional[Decimal] = None
    section_id: Optional[int] = None
    parent_item_id: Optional[int] = None
    position_number: Optional[int] = Field(default=None, ge=1)
    classification_label: ItemLabel = ItemLabel.WORK
    classification_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    classification_source: Optional[str] = None


class ItemResponse(BaseModel):
    id: int
    estimate_id: int
    section_id: Optional[int] = None
    parent_item_id: Optional[int] = None
    position_number: int
    code: Optional[str] = None
    name: str
    unit: Optional[str] = None
    quantity: Decimal
    unit_price: Optional[Decimal] = None
    classification_label: str
    classification_confidence: float
    classification_source: str

    model_config = ConfigDict(from_attributes=True)


class NumberingIssue(BaseModel):
    section_id: int
    parent_section_id: Optional[int] = None
    expected_number: str
    actual_number: str
    expected_sort_order: int
    actual_sort_order: int


class NumberingReport(BaseModel):
    estimate_id: int
    section_count: int
    is_valid: bool = True
    issues: list[NumberingIssue] = Field(default_factory=list)
