"""Schemas for community validations and consensus reads."""
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from fundflow.models.validation import ValidationStatus


class GpsLocation(BaseModel):
    lat: float
    lng: float
    accuracy: float | None = None


class ValidationCreate(BaseModel):
    """Submission payload.

    Ids and rating are taken as sent; the intake service checks and coerces them
    so that its fixed check order decides which error a bad payload gets.
    """

    project_id: Any = Field(default=None, validation_alias=AliasChoices("project_id", "projectId"))
    milestone_id: Any = Field(default=None, validation_alias=AliasChoices("milestone_id", "milestoneId"))
    validator_id: Any = Field(default=None, validation_alias=AliasChoices("validator_id", "validatorId"))
    photos: list[str] = Field(default_factory=list)
    gps_location: GpsLocation | None = Field(
        default=None, validation_alias=AliasChoices("gps_location", "gpsLocation")
    )
    rating: Any = None
    comment: str = Field(
        default="", validation_alias=AliasChoices("comment", "feedback_comment", "feedbackComment")
    )
    language: str = Field(default="en", max_length=16)


class ValidationSubmitResult(BaseModel):
    validation_id: int
    status: ValidationStatus
    message: str


class ValidationRead(BaseModel):
    id: int
    project_id: int
    milestone_id: int
    validator_id: int
    rating: int
    comment: str
    photos: list[str]
    gps_lat: float | None
    gps_lng: float | None
    gps_accuracy: float | None
    language: str
    status: ValidationStatus
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ConsensusRead(BaseModel):
    project_id: int
    milestone_id: int
    outcome: str
    reached: bool
    required: int
    approved: int
    pending: int
    counted: int
    average_rating: Decimal | None
    milestone_status: str
