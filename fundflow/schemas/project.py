"""Schemas for projects and their milestones."""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from fundflow.models.milestone import MilestoneStatus
from fundflow.models.project import ProjectCategory


class MilestoneCreate(BaseModel):
    idx: int = Field(gt=0)
    title: str = Field(min_length=1, max_length=200)
    description: str = ""
    target_amount: Decimal = Field(gt=Decimal("0"))
    validators_required: int | None = Field(default=None, ge=1)
    status: MilestoneStatus = MilestoneStatus.PENDING

    @field_validator("status")
    @classmethod
    def _open_status_only(cls, value: MilestoneStatus) -> MilestoneStatus:
        """Settled statuses are reached through consensus, never at creation."""

        if value not in (MilestoneStatus.PENDING, MilestoneStatus.ACTIVE):
            raise ValueError("milestones are created pending or active")
        return value


class MilestoneRead(BaseModel):
    id: int
    project_id: int
    idx: int
    title: str
    description: str
    target_amount: Decimal
    current_amount: Decimal
    status: MilestoneStatus
    validators_required: int
    validators_approved: int
    verified_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ProjectCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = ""
    target_amount: Decimal = Field(gt=Decimal("0"))
    currency: str = Field(default="USD", pattern=r"^[A-Za-z]{3}$")
    category: ProjectCategory
    region_id: str = Field(min_length=1, max_length=32)
    ngo_address: str = Field(min_length=1, max_length=128)
    images: list[str] = Field(default_factory=list)
    milestones: list[MilestoneCreate] = Field(default_factory=list)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()

    @field_validator("milestones")
    @classmethod
    def _unique_idx(cls, value: list[MilestoneCreate]) -> list[MilestoneCreate]:
        indexes = [milestone.idx for milestone in value]
        if len(indexes) != len(set(indexes)):
            raise ValueError("milestone idx values must be unique")
        return value


class ProjectRead(BaseModel):
    id: int
    title: str
    description: str
    target_amount: Decimal
    current_amount: Decimal
    currency: str
    category: ProjectCategory
    region_id: str
    ngo_address: str
    images: list[str]
    milestones: list[MilestoneRead]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
