from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from estimator.app.domains.classification.schemas import ItemLabel, UNCLASSIFIED_SOURCE
from estimator.app.infrastructure.database import Base
from estimator.app.infrastructure.datetime_utils import utc_now


class Estimate(Base):
    __tablename__ = "estimates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    name: Mapped[str] = mapped_column(String(500), nullable=False)

    # Current snapshot pointer; only swapped after the new blob is written
    structure_cache_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    snapshot_generated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    @property
    def storage_prefix(self) -> str:
        return f"org-{self.organization_id}" if self.organization_id else "shared"


class EstimateSection(Base):
    __tablename__ = "estimate_sections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    estimate_id: Mapped[int] = mapped_column(
        ForeignKey("estimates.id", ondelete="CASCADE"), nullable=False
    )
    parent_section_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("estimate_sections.id", ondelete="CASCADE"), nullable=True
    )
    # Derived from the tree shape; written only by the numbering engine
    section_number: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    name: Mapped[str] = mapped_column(String(1000), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        Index("ix_estimate_sections_scope", "estimate_id", "parent_section_id", "sort_order"),
    )

    @property
    def is_root(self) -> bool:
        return self.parent_section_id is None


class EstimateItem(Base):
    __tablename__ = "estimate_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    estimate_id: Mapped[int] = mapped_column(
        ForeignKey("estimates.id", ondelete="CASCADE"), nullable=False
    )
    section_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("estimate_sections.id", ondelete="CASCADE"), nullable=True
    )
    parent_item_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("estimate_items.id", ondelete="CASCADE"), nullable=True
    )
    position_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    code: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    unit: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=0)
    unit_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)

    work_type_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("work_types.id"), nullable=True
    )
    measurement_unit_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("measurement_units.id"), nullable=True
    )

    classification_label: Mapped[str] = mapped_column(
        String(32), nullable=False, default=ItemLabel.WORK.value
    )
    classification_confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    classification_source: Mapped[str] = mapped_column(
        String(64), nullable=False, default=UNCLASSIFIED_SOURCE
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        Index("ix_estimate_items_estimate", "estimate_id", "position_number"),
        Index("ix_estimate_items_section", "section_id"),
        Index("ix_estimate_items_parent", "parent_item_id"),
    )

    @property
    def needs_review(self) -> bool:
        return self.classification_source == UNCLASSIFIED_SOURCE


class EstimateItemResource(Base):
    __tablename__ = "estimate_item_resources"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_id: Mapped[int] = mapped_column(
        ForeignKey("estimate_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    resource_type: Mapped[str] = mapped_column(String(32), nullable=False)
    code: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    unit: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=0)
    unit_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)


class EstimateItemTotal(Base):
    __tablename__ = "estimate_item_totals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_id: Mapped[int] = mapped_column(
        ForeignKey("estimate_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    kind: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=0)


class EstimateItemWork(Base):
    __tablename__ = "estimate_item_works"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_id: Mapped[int] = mapped_column(
        ForeignKey("estimate_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class WorkType(Base):
    __tablename__ = "work_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class MeasurementUnit(Base):
    __tablename__ = "measurement_units"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    symbol: Mapped[str] = mapped_column(String(32), nullable=False)
