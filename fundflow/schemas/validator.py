"""Schemas for community validators."""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from fundflow.models.validator import ValidatorStatus


class ValidatorCreate(BaseModel):
    wallet_address: str = Field(min_length=1, max_length=128)
    region_id: str = Field(min_length=1, max_length=32)
    languages: list[str] = Field(default_factory=list)
    reputation_score: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))


class ValidatorRead(BaseModel):
    id: int
    wallet_address: str
    region_id: str
    reputation_score: Decimal
    validation_count: int
    community_endorsements: int
    languages: list[str]
    status: ValidatorStatus
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
