"""Project model definitions."""
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import CheckConstraint, Index, JSON, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, value_enum


class ProjectCategory(str, PyEnum):
    """Impact category of a project."""

    WATER = "water"
    EDUCATION = "education"
    HEALTH = "health"
    AGRICULTURE = "agriculture"
    INFRASTRUCTURE = "infrastructure"


class Project(Base):
    """A community project funded by donors and owned by an NGO."""

    __tablename__ = "projects"
    __table_args__ = (
        CheckConstraint("target_amount > 0", name="ck_project_positive_target"),
        CheckConstraint("current_amount >= 0", name="ck_project_current_non_negative"),
        Index("ix_projects_category", "category"),
        Index("ix_projects_region", "region_id"),
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    target_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    current_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    category: Mapped[ProjectCategory] = mapped_column(value_enum(ProjectCategory), nullable=False)
    region_id: Mapped[str] = mapped_column(String(32), nullable=False)
    ngo_address: Mapped[str] = mapped_column(String(128), nullable=False)
    images: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    milestones = relationship(
        "Milestone",
        back_populates="project",
        order_by="Milestone.idx",
        cascade="all, delete-orphan",
    )
