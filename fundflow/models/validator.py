"""Community validator model."""
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import Integer, JSON, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, value_enum


class ValidatorStatus(str, PyEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class CommunityValidator(Base):
    """A community member authorised to verify milestone progress on the ground."""

    __tablename__ = "community_validators"

    wallet_address: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    region_id: Mapped[str] = mapped_column(String(32), nullable=False)
    reputation_score: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False, default=Decimal("0"))
    validation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    community_endorsements: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    languages: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[ValidatorStatus] = mapped_column(
        value_enum(ValidatorStatus), nullable=False, default=ValidatorStatus.ACTIVE
    )
