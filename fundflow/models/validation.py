"""Milestone validation model."""
from enum import Enum as PyEnum

from sqlalchemy import CheckConstraint, Float, ForeignKey, Index, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, value_enum


class ValidationStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Validation(Base):
    """A single community verification of a milestone (rating, photos, GPS fix)."""

    __tablename__ = "milestone_validations"
    __table_args__ = (
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_validation_rating_range"),
        Index("ix_validations_project_milestone", "project_id", "milestone_id"),
        Index("ix_validations_status", "status"),
    )

    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id"), nullable=False)
    milestone_id: Mapped[int] = mapped_column(ForeignKey("milestones.id"), nullable=False)
    validator_id: Mapped[int] = mapped_column(ForeignKey("community_validators.id"), nullable=False, index=True)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str] = mapped_column(Text, nullable=False, default="")
    photos: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    gps_lat: Mapped[float | None] = mapped_column(Float(asdecimal=False), nullable=True)
    gps_lng: Mapped[float | None] = mapped_column(Float(asdecimal=False), nullable=True)
    gps_accuracy: Mapped[float | None] = mapped_column(Float(asdecimal=False), nullable=True)
    language: Mapped[str] = mapped_column(String(16), nullable=False, default="en")
    status: Mapped[ValidationStatus] = mapped_column(
        value_enum(ValidationStatus), nullable=False, default=ValidationStatus.PENDING
    )

    milestone = relationship("Milestone", back_populates="validations")
