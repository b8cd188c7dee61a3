"""Milestone model definitions."""
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, value_enum


class MilestoneStatus(str, PyEnum):
    """Possible statuses for a milestone."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    VERIFIED = "verified"


SETTLED_MILESTONE_STATES = (MilestoneStatus.COMPLETED, MilestoneStatus.VERIFIED)


class Milestone(Base):
    """A funded sub-goal of a project, released after community verification."""

    __tablename__ = "milestones"
    __table_args__ = (
        UniqueConstraint("project_id", "idx", name="uq_milestone_project_idx"),
        CheckConstraint("idx > 0", name="ck_milestone_positive_idx"),
        CheckConstraint("target_amount > 0", name="ck_milestone_positive_target"),
        CheckConstraint("validators_required > 0", name="ck_milestone_validators_required"),
    )

    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id"), nullable=False, index=True)
    idx: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    target_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    current_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    status: Mapped[MilestoneStatus] = mapped_column(
        value_enum(MilestoneStatus), nullable=False, default=MilestoneStatus.PENDING
    )
    validators_required: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    validators_approved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    project = relationship("Project", back_populates="milestones")
    validations = relationship("Validation", back_populates="milestone", order_by="Validation.id")
