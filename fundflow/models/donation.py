"""Donation transaction model."""
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, value_enum


class PaymentMethod(str, PyEnum):
    MOBILE_MONEY = "mobile_money"
    CARD = "card"
    CRYPTO = "crypto"


class DonationStatus(str, PyEnum):
    """Lifecycle of a donation; terminal states are set by payment events only."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    QUEUED = "queued"


TERMINAL_DONATION_STATES = (DonationStatus.COMPLETED, DonationStatus.FAILED)


class DonationTransaction(Base):
    """A donor payment towards a project (optionally earmarked for a milestone)."""

    __tablename__ = "donation_transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_donation_positive_amount"),
        Index("ix_donations_project_status", "project_id", "status"),
        Index("ix_donations_created_at", "created_at"),
    )

    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id"), nullable=False, index=True)
    milestone_id: Mapped[int | None] = mapped_column(ForeignKey("milestones.id"), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(value_enum(PaymentMethod), nullable=False)
    status: Mapped[DonationStatus] = mapped_column(
        value_enum(DonationStatus), nullable=False, default=DonationStatus.PENDING
    )
    tx_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    donor_address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    offline: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payment_reference: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    mobile_money_provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    client_reference: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
