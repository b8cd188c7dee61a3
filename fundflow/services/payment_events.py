"""Payment provider webhooks: verification, parsing and idempotent application."""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping

import stripe
from fastapi import BackgroundTasks, HTTPException, status
from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fundflow.config import get_settings
from fundflow.models import (
    DonationStatus,
    DonationTransaction,
    PaymentWebhookEvent,
    Project,
    TERMINAL_DONATION_STATES,
)
from fundflow.schemas.webhook import (
    MobileMoneyPaymentFailed,
    MobileMoneyPaymentSuccess,
    STRIPE_HANDLED_EVENT_TYPES,
    StripeCheckoutSucceeded,
    WebhookAck,
    mobile_money_event_adapter,
    stripe_checkout_event_adapter,
)
from fundflow.services import currency as currency_service
from fundflow.services import impact as impact_service
from fundflow.services import notifications
from fundflow.services.donations import find_by_payment_reference
from fundflow.utils.audit import log_audit
from fundflow.utils.background import dispatch
from fundflow.utils.errors import DomainError, NotFound, error_response
from fundflow.utils.time import to_epoch_seconds, utcnow

logger = logging.getLogger(__name__)

STRIPE_PROVIDER = "stripe"
MOBILE_MONEY_PROVIDER = "mobile_money"
MOBILE_MONEY_SIGNATURE_HEADER = "X-Webhook-Signature"
MOBILE_MONEY_TIMESTAMP_HEADER = "X-Webhook-Timestamp"


class PaymentOutcomeKind(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PENDING = "pending"


@dataclass(frozen=True)
class PaymentOutcome:
    """Provider-neutral view of one payment status signal."""

    provider: str
    event_id: str
    kind: PaymentOutcomeKind
    reference: str
    event_type: str
    amount: Decimal | None = None
    currency: str | None = None
    external_id: str | None = None
    mobile_money_provider: str | None = None
    phone_number: str | None = None
    email: str | None = None
    project_id: int | None = None
    raw: dict[str, Any] = field(default_factory=dict)


def _invalid_payload(exc: ValidationError | None = None, message: str = "Webhook payload is invalid.") -> HTTPException:
    details = {"errors": exc.errors(include_url=False, include_context=False)} if exc is not None else None
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=error_response("INVALID_PAYLOAD", message, details),
    )


def _decode_json(payload: bytes) -> dict[str, Any]:
    try:
        data = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response("INVALID_JSON", "Webhook body is not valid JSON."),
        )
    if not isinstance(data, dict):
        raise _invalid_payload(message="Webhook body must be a JSON object.")
    return data


# --- Stripe --------------------------------------------------------------


def verify_stripe_payload(payload: bytes, sig_header: str | None) -> dict[str, Any]:
    """Check the Stripe signature and return the decoded event body."""

    settings = get_settings()
    if not settings.STRIPE_ENABLED:
        logger.warning("Stripe webhook received while Stripe is disabled")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=error_response("STRIPE_DISABLED", "Stripe integration is disabled."),
        )
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("Stripe webhook secret is not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=error_response("STRIPE_NOT_CONFIGURED", "Stripe webhook secret is not configured."),
        )
    if not sig_header:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response("STRIPE_SIGNATURE_MISSING", "Stripe-Signature header is required."),
        )

    try:
        stripe.WebhookSignature.verify_header(
            payload.decode("utf-8"),
            sig_header,
            settings.STRIPE_WEBHOOK_SECRET,
            settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
        )
    except (stripe.SignatureVerificationError, UnicodeDecodeError):
        logger.warning("Stripe signature verification failed")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response("STRIPE_SIGNATURE_INVALID", "Invalid Stripe signature."),
        )
    return _decode_json(payload)


def parse_stripe_event(event: dict[str, Any]) -> PaymentOutcome | None:
    """Map a verified Stripe event to an outcome; ``None`` for event types we ignore."""

    event_type = event.get("type") or ""
    logger.info("Stripe webhook received", extra={"event_type": event_type, "event_id": event.get("id")})
    if event_type not in STRIPE_HANDLED_EVENT_TYPES:
        logger.info("Unhandled Stripe event type", extra={"event_type": event_type})
        return None

    try:
        parsed = stripe_checkout_event_adapter.validate_python(event)
    except ValidationError as exc:
        logger.warning("Stripe checkout event failed validation", extra={"event_type": event_type})
        raise _invalid_payload(exc)

    session = parsed.data.object
    succeeded = isinstance(parsed, StripeCheckoutSucceeded)
    amount = None
    if session.amount_total is not None:
        amount = (Decimal(session.amount_total) / Decimal("100")).quantize(Decimal("0.01"))
    return PaymentOutcome(
        provider=STRIPE_PROVIDER,
        event_id=parsed.id,
        kind=PaymentOutcomeKind.SUCCEEDED if succeeded else PaymentOutcomeKind.FAILED,
        reference=session.id,
        event_type=parsed.type,
        amount=amount,
        currency=session.currency.upper() if session.currency else None,
        external_id=session.payment_intent,
        email=session.email,
        project_id=session.project_id,
        raw=event,
    )


# --- Mobile money --------------------------------------------------------


def _current_secrets() -> tuple[str | None, str | None]:
    settings = get_settings()
    return settings.mobile_money_webhook_secret, settings.mobile_money_webhook_secret_next


def _masked_secret_status(secrets_info: Mapping[str, str | None]) -> dict[str, str | None]:
    """Return deterministic markers instead of raw secrets for logging."""

    masked: dict[str, str | None] = {}
    for name, secret in secrets_info.items():
        if not secret:
            masked[name] = None
            continue
        masked[name] = f"sha256:{hashlib.sha256(secret.encode()).hexdigest()[:8]}"
    return masked


def _get_header(headers: Mapping[str, str], key: str) -> str | None:
    for h_key, value in headers.items():
        if h_key.lower() == key.lower():
            return value
    return None


def compute_webhook_signature(secret: str, body: bytes, timestamp: str) -> str:
    """HMAC-SHA256 of ``"{timestamp}.{body}"`` as a hex digest."""

    msg = f"{timestamp}.{body.decode('utf-8')}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), msg, hashlib.sha256).hexdigest()


def _unauthorized(code: str, message: str, details: dict[str, Any] | None = None) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=error_response(code, message, details))


def _parse_timestamp(ts: str, secrets_info: Mapping[str, str | None]) -> int:
    try:
        return to_epoch_seconds(ts)
    except ValueError:
        logger.warning(
            "Invalid mobile money webhook timestamp format",
            extra={"secret_status": _masked_secret_status(secrets_info)},
        )
        raise _unauthorized("WEBHOOK_TIMESTAMP_INVALID", "Invalid timestamp format.")


def verify_mobile_money_signature(raw_body: bytes, headers: Mapping[str, str]) -> int:
    """Validate the mobile money signature and timestamp; return the timestamp in seconds."""

    provided_sig = _get_header(headers, MOBILE_MONEY_SIGNATURE_HEADER)
    ts = _get_header(headers, MOBILE_MONEY_TIMESTAMP_HEADER)

    primary_secret, next_secret = _current_secrets()
    secrets = [secret for secret in (primary_secret, next_secret) if secret]
    secrets_info = {"primary": primary_secret, "next": next_secret}
    if not secrets:
        logger.error(
            "Mobile money webhook secrets are not configured",
            extra={"secret_status": _masked_secret_status(secrets_info)},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=error_response("WEBHOOK_SECRET_NOT_CONFIGURED", "Webhook secrets are not configured."),
        )

    if not provided_sig or not ts:
        logger.warning(
            "Missing mobile money signature or timestamp",
            extra={"secret_status": _masked_secret_status(secrets_info)},
        )
        raise _unauthorized("WEBHOOK_SIGNATURE_MISSING", "Signature or timestamp header missing.")

    ts_seconds = _parse_timestamp(ts, secrets_info)
    max_drift = get_settings().webhook_max_drift_seconds
    age = abs(int(time.time()) - ts_seconds)
    if age > max_drift:
        logger.warning(
            "Mobile money webhook timestamp outside allowed window",
            extra={"secret_status": _masked_secret_status(secrets_info), "age": age},
        )
        raise _unauthorized(
            "WEBHOOK_TIMESTAMP_DRIFT",
            "Webhook timestamp is outside allowed window.",
            {"age_seconds": age, "max_drift_seconds": max_drift},
        )

    for secret in secrets:
        expected = compute_webhook_signature(secret, raw_body, ts)
        if hmac.compare_digest(expected, provided_sig):
            return ts_seconds

    logger.warning(
        "Mobile money webhook signature mismatch",
        extra={"secret_status": _masked_secret_status(secrets_info)},
    )
    raise _unauthorized("WEBHOOK_SIGNATURE_INVALID", "Invalid webhook signature.")


def parse_mobile_money_event(raw_body: bytes) -> PaymentOutcome:
    data = _decode_json(raw_body)
    try:
        event = mobile_money_event_adapter.validate_python(data)
    except ValidationError as exc:
        logger.warning("Mobile money event failed validation", extra={"type": data.get("type")})
        raise _invalid_payload(exc)

    if isinstance(event, MobileMoneyPaymentSuccess):
        kind = PaymentOutcomeKind.SUCCEEDED
    elif isinstance(event, MobileMoneyPaymentFailed):
        kind = PaymentOutcomeKind.FAILED
    else:
        kind = PaymentOutcomeKind.PENDING

    logger.info(
        "Mobile money webhook received",
        extra={"type": event.type, "provider": event.provider, "reference": event.reference},
    )
    return PaymentOutcome(
        provider=MOBILE_MONEY_PROVIDER,
        event_id=f"{event.provider}:{event.transaction_id}:{event.type}",
        kind=kind,
        reference=event.reference,
        event_type=event.type,
        amount=event.amount,
        currency=event.currency.upper(),
        external_id=event.transaction_id,
        mobile_money_provider=event.provider,
        phone_number=event.phone_number,
        raw=data,
    )


# --- Application ---------------------------------------------------------


def _register_event(db: Session, outcome: PaymentOutcome) -> PaymentWebhookEvent | None:
    """Record the delivery; ``None`` when it was already seen."""

    existing = db.scalars(
        select(PaymentWebhookEvent.id).where(
            PaymentWebhookEvent.provider == outcome.provider,
            PaymentWebhookEvent.event_id == outcome.event_id,
        )
    ).first()
    if existing is not None:
        return None

    event = PaymentWebhookEvent(
        provider=outcome.provider,
        event_id=outcome.event_id,
        payment_reference=outcome.reference,
        kind=outcome.event_type,
        raw_json=outcome.raw,
        received_at=utcnow(),
    )
    try:
        db.add(event)
        db.flush()
    except IntegrityError:
        db.rollback()
        return None
    return event


def _feed_impact(
    db: Session, transaction: DonationTransaction, outcome: PaymentOutcome, project: Project | None = None
) -> None:
    """Feed a completed donation into the impact aggregate; repeats are no-ops."""

    if outcome.kind is not PaymentOutcomeKind.SUCCEEDED or transaction.status != DonationStatus.COMPLETED:
        return
    project = project or db.get(Project, transaction.project_id)
    impact_service.apply_impact(
        db,
        source_key=f"donation:{transaction.id}",
        amount=outcome.amount if outcome.amount is not None else transaction.amount,
        currency=outcome.currency or transaction.currency,
        category=project.category,
    )


def _duplicate_ack(db: Session, outcome: PaymentOutcome) -> WebhookAck:
    logger.info(
        "Duplicate payment webhook ignored",
        extra={"provider": outcome.provider, "event_id": outcome.event_id},
    )
    transaction = find_by_payment_reference(db, outcome.reference)
    if transaction is None:
        return WebhookAck(duplicate=True)
    # A redelivery finishes an impact update that failed after the status commit.
    _feed_impact(db, transaction, outcome)
    return WebhookAck(duplicate=True, status=transaction.status.value, transaction_id=transaction.id)


def _transition(db: Session, transaction: DonationTransaction, outcome: PaymentOutcome) -> bool:
    """Apply the conditional status update; True when this call made the transition."""

    stmt = update(DonationTransaction).where(DonationTransaction.id == transaction.id)
    values: dict[str, Any] = {"updated_at": utcnow()}
    if outcome.kind is PaymentOutcomeKind.SUCCEEDED:
        stmt = stmt.where(DonationTransaction.status != DonationStatus.COMPLETED)
        values["status"] = DonationStatus.COMPLETED
    elif outcome.kind is PaymentOutcomeKind.FAILED:
        stmt = stmt.where(DonationTransaction.status.not_in(TERMINAL_DONATION_STATES))
        values["status"] = DonationStatus.FAILED
    else:
        stmt = stmt.where(DonationTransaction.status.in_((DonationStatus.PENDING, DonationStatus.QUEUED)))
        values["status"] = DonationStatus.PROCESSING

    if outcome.external_id:
        values["tx_hash"] = outcome.external_id
    if outcome.mobile_money_provider:
        values["mobile_money_provider"] = outcome.mobile_money_provider

    result = db.execute(stmt.values(**values).execution_options(synchronize_session=False))
    return result.rowcount == 1


def _project_credit(project: Project, amount: Decimal, currency: str) -> Decimal | None:
    """Amount to add to the project's total in the project's currency, if a rate is known."""

    try:
        rate = currency_service.get_rate(currency, project.currency)
    except DomainError:
        logger.warning(
            "No conversion rate for project credit; skipping",
            extra={"project_id": project.id, "from": currency, "to": project.currency},
        )
        return None
    return (amount * rate).quantize(Decimal("0.01"))


def apply_payment_outcome(
    db: Session,
    outcome: PaymentOutcome,
    *,
    background: BackgroundTasks | None = None,
) -> WebhookAck:
    """Apply one verified payment signal exactly once.

    Only the call that wins the ``completed`` transition credits the project.
    Every success signal for a completed donation feeds the impact aggregate,
    keyed by the donation so it is counted once.
    """

    event = _register_event(db, outcome)
    if event is None:
        return _duplicate_ack(db, outcome)

    transaction = find_by_payment_reference(db, outcome.reference)
    if transaction is None:
        db.rollback()
        logger.warning(
            "Payment webhook for unknown transaction",
            extra={"provider": outcome.provider, "reference": outcome.reference},
        )
        raise NotFound(
            "Transaction not found",
            code="TRANSACTION_NOT_FOUND",
            details={"reference": outcome.reference},
        )

    project = db.get(Project, transaction.project_id)
    amount = outcome.amount if outcome.amount is not None else transaction.amount
    currency = (outcome.currency or transaction.currency).upper()
    credit = None
    if outcome.kind is PaymentOutcomeKind.SUCCEEDED:
        credit = _project_credit(project, amount, currency)

    won = _transition(db, transaction, outcome)
    if won and credit is not None:
        db.execute(
            update(Project)
            .where(Project.id == project.id)
            .values(current_amount=Project.current_amount + credit, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    event.processed_at = utcnow()
    log_audit(
        db,
        actor=outcome.provider,
        action=f"PAYMENT_{outcome.kind.value.upper()}",
        entity="DonationTransaction",
        entity_id=transaction.id,
        data={
            "event_id": outcome.event_id,
            "reference": outcome.reference,
            "applied": won,
            "amount": str(amount),
            "currency": currency,
            "phone_number": outcome.phone_number,
            "email": outcome.email,
        },
    )
    db.commit()
    db.refresh(transaction)

    logger.info(
        "Payment webhook processed",
        extra={
            "provider": outcome.provider,
            "event_id": outcome.event_id,
            "transaction_id": transaction.id,
            "status": transaction.status.value,
            "applied": won,
        },
    )

    _feed_impact(db, transaction, outcome, project)
    if won and outcome.kind is PaymentOutcomeKind.SUCCEEDED:
        if outcome.phone_number:
            dispatch(
                background,
                notifications.send_sms,
                outcome.phone_number,
                f"Your donation of {amount} {currency} to {project.title} has been received. "
                f"Transaction ID: {outcome.external_id or outcome.reference}",
            )

    return WebhookAck(status=transaction.status.value, transaction_id=transaction.id)


__all__ = [
    "MOBILE_MONEY_PROVIDER",
    "PaymentOutcome",
    "PaymentOutcomeKind",
    "STRIPE_PROVIDER",
    "apply_payment_outcome",
    "compute_webhook_signature",
    "parse_mobile_money_event",
    "parse_stripe_event",
    "verify_mobile_money_signature",
    "verify_stripe_payload",
]
