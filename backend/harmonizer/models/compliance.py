"""
Cross-framework control mappings.

A mapping is a directed edge: satisfying the source control is evidence that
the target control is satisfied too. Edges may be sparse, asymmetric and
cyclic; the harmonization engine only ever follows one hop.
"""
from datetime import datetime

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class ControlMapping(Base):
    """Confidence-tagged equivalence edge between two controls."""

    __tablename__ = "control_mappings"
    __table_args__ = (
        UniqueConstraint("source_control_id", "target_control_id", name="uq_cm_src_tgt"),
        Index("ix_cm_source", "source_control_id"),
        Index("ix_cm_target", "target_control_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_control_id: Mapped[int] = mapped_column(
        ForeignKey("controls.id", ondelete="CASCADE"), nullable=False,
    )
    target_control_id: Mapped[int] = mapped_column(
        ForeignKey("controls.id", ondelete="CASCADE"), nullable=False,
    )

    # equivalent | partial | related
    mapping_type: Mapped[str] = mapped_column(String(50), default="equivalent", nullable=False)
    # manual | ai_high | ai_medium | heuristic, most trusted first
    confidence: Mapped[str] = mapped_column(String(50), default="manual", nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)

    created_by: Mapped[str | None] = mapped_column(String(200))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False,
    )

    # relationships
    source_control: Mapped["Control"] = relationship(foreign_keys=[source_control_id])
    target_control: Mapped["Control"] = relationship(foreign_keys=[target_control_id])


# Resolve forward references
from .framework import Control  # noqa: F401, E402
