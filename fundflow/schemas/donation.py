"""Schemas for donation transactions and offline batch sync."""
from datetime import datetime
from decimal import Decimal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from fundflow.models.donation import DonationStatus, PaymentMethod


class DonationCreate(BaseModel):
    """Client-side donation record; the status is derived, never supplied."""

    project_id: int
    milestone_id: int | None = None
    amount: Decimal = Field(gt=Decimal("0"))
    currency: str = Field(pattern=r"^[A-Za-z]{3}$")
    payment_method: PaymentMethod
    donor_address: str | None = Field(default=None, max_length=255)
    payment_reference: str | None = Field(default=None, max_length=255)
    mobile_money_provider: str | None = Field(default=None, max_length=50)
    offline: bool = False

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()


class DonationRead(BaseModel):
    id: int
    project_id: int
    milestone_id: int | None
    amount: Decimal
    currency: str
    payment_method: PaymentMethod
    status: DonationStatus
    tx_hash: str | None
    donor_address: str | None
    offline: bool
    payment_reference: str | None
    mobile_money_provider: str | None
    client_reference: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OfflineTransactionIn(BaseModel):
    """One transaction queued by a client while disconnected (camelCase accepted)."""

    id: str | None = None
    project_id: int = Field(validation_alias=AliasChoices("project_id", "projectId"))
    milestone_id: int | None = Field(default=None, validation_alias=AliasChoices("milestone_id", "milestoneId"))
    amount: Decimal = Field(gt=Decimal("0"))
    currency: str = Field(pattern=r"^[A-Za-z]{3}$")
    payment_method: PaymentMethod = Field(validation_alias=AliasChoices("payment_method", "paymentMethod"))
    mobile_money_provider: str | None = Field(
        default=None,
        max_length=50,
        validation_alias=AliasChoices("mobile_money_provider", "mobileMoneyProvider"),
    )
    donor_address: str | None = Field(
        default=None, max_length=255, validation_alias=AliasChoices("donor_address", "donorAddress")
    )
    timestamp: datetime | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value):
        return None if value is None else str(value)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()


class OfflineSyncProcessed(BaseModel):
    original_id: str | None
    new_id: int
    status: str = "processed"


class OfflineSyncFailed(BaseModel):
    original_id: str | None
    error: str


class OfflineSyncResult(BaseModel):
    processed: int
    failed: int
    processed_transactions: list[OfflineSyncProcessed]
    failed_transactions: list[OfflineSyncFailed]
