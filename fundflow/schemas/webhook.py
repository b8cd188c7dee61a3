"""Boundary schemas for payment-provider webhook payloads.

Payloads are parsed into tagged unions; anything that does not match a known
shape is rejected instead of being best-effort parsed.
"""
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter

MobileMoneyProviderName = Literal["M-Pesa", "Orange Money", "MTN Mobile Money", "Airtel Money"]


class _MobileMoneyEventBase(BaseModel):
    provider: MobileMoneyProviderName
    transaction_id: str = Field(min_length=1, validation_alias=AliasChoices("transaction_id", "transactionId"))
    amount: Decimal = Field(gt=Decimal("0"))
    currency: str = Field(pattern=r"^[A-Za-z]{3}$")
    phone_number: str | None = Field(default=None, validation_alias=AliasChoices("phone_number", "phoneNumber"))
    reference: str = Field(min_length=1)
    timestamp: datetime | None = None

    model_config = ConfigDict(extra="ignore")


class MobileMoneyPaymentSuccess(_MobileMoneyEventBase):
    type: Literal["payment_success"]


class MobileMoneyPaymentFailed(_MobileMoneyEventBase):
    type: Literal["payment_failed"]


class MobileMoneyPaymentPending(_MobileMoneyEventBase):
    type: Literal["payment_pending"]


MobileMoneyEvent = Annotated[
    Union[MobileMoneyPaymentSuccess, MobileMoneyPaymentFailed, MobileMoneyPaymentPending],
    Field(discriminator="type"),
]
mobile_money_event_adapter: TypeAdapter[MobileMoneyEvent] = TypeAdapter(MobileMoneyEvent)


class StripeCheckoutSession(BaseModel):
    id: str = Field(min_length=1)
    amount_total: int | None = Field(default=None, ge=0)
    currency: str | None = None
    customer_email: str | None = None
    customer_details: dict[str, Any] | None = None
    payment_intent: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="ignore")

    @property
    def email(self) -> str | None:
        if self.customer_email:
            return self.customer_email
        return (self.customer_details or {}).get("email")

    @property
    def project_id(self) -> int | None:
        raw = self.metadata.get("project_id") or self.metadata.get("projectId")
        try:
            return int(raw) if raw not in (None, "") else None
        except (TypeError, ValueError):
            return None


class _StripeSessionData(BaseModel):
    object: StripeCheckoutSession


class StripeCheckoutSucceeded(BaseModel):
    id: str = Field(min_length=1)
    type: Literal["checkout.session.completed", "checkout.session.async_payment_succeeded"]
    data: _StripeSessionData

    model_config = ConfigDict(extra="ignore")


class StripeCheckoutFailed(BaseModel):
    id: str = Field(min_length=1)
    type: Literal["checkout.session.async_payment_failed", "checkout.session.expired"]
    data: _StripeSessionData

    model_config = ConfigDict(extra="ignore")


StripeCheckoutEvent = Annotated[
    Union[StripeCheckoutSucceeded, StripeCheckoutFailed],
    Field(discriminator="type"),
]
stripe_checkout_event_adapter: TypeAdapter[StripeCheckoutEvent] = TypeAdapter(StripeCheckoutEvent)

STRIPE_HANDLED_EVENT_TYPES = frozenset(
    {
        "checkout.session.completed",
        "checkout.session.async_payment_succeeded",
        "checkout.session.async_payment_failed",
        "checkout.session.expired",
    }
)


class WebhookAck(BaseModel):
    received: bool = True
    duplicate: bool = False
    status: str | None = None
    transaction_id: int | None = None
