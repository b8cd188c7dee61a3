"""Tests for mobile money and Stripe payment webhooks."""
from __future__ import annotations

import hashlib
import hmac
import json
import time
from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.concurrency import run_in_threadpool
from sqlalchemy import func, select

from fundflow.config import get_settings
from fundflow.main import _assert_webhook_secrets
from fundflow.models import (
    DonationStatus,
    DonationTransaction,
    ImpactEvent,
    ImpactMetrics,
    PaymentMethod,
    PaymentWebhookEvent,
    Project,
)
from fundflow.routers import webhooks as webhooks_router
from fundflow.services import impact as impact_service
from fundflow.services import notifications
from fundflow.services.payment_events import compute_webhook_signature
from fundflow.utils.errors import PersistenceFailure
from fundflow.utils.time import utcnow

MOBILE_SECRET = "test-mobile-money-secret"
STRIPE_SECRET = "whsec_test_secret"


@pytest.fixture(autouse=True)
def webhook_secrets(monkeypatch):
    settings = get_settings()
    monkeypatch.setattr(settings, "mobile_money_webhook_secret", MOBILE_SECRET)
    monkeypatch.setattr(settings, "mobile_money_webhook_secret_next", None)
    monkeypatch.setattr(settings, "STRIPE_ENABLED", True)
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", STRIPE_SECRET)


@pytest.fixture
def sms_sent(monkeypatch):
    sent: list[tuple[str, str]] = []
    monkeypatch.setattr(notifications, "send_sms", lambda phone, message: sent.append((phone, message)))
    return sent


def _donation(db_session, project, reference, *, amount="50.00", currency="KES", status=DonationStatus.PENDING):
    donation = DonationTransaction(
        project_id=project.id,
        amount=Decimal(amount),
        currency=currency,
        payment_method=PaymentMethod.MOBILE_MONEY,
        status=status,
        payment_reference=reference,
    )
    db_session.add(donation)
    db_session.commit()
    return donation


def _mobile_money_event(reference, *, event_type="payment_success", transaction_id="MPX123", amount="50.00"):
    return {
        "type": event_type,
        "provider": "M-Pesa",
        "transactionId": transaction_id,
        "amount": amount,
        "currency": "KES",
        "phoneNumber": "+254712345678",
        "reference": reference,
        "timestamp": "2024-05-01T08:30:00Z",
    }


def _signed_headers(body: bytes, *, secret: str = MOBILE_SECRET, timestamp: int | None = None) -> dict[str, str]:
    ts = str(timestamp if timestamp is not None else int(time.time()))
    return {
        "Content-Type": "application/json",
        "X-Webhook-Timestamp": ts,
        "X-Webhook-Signature": compute_webhook_signature(secret, body, ts),
    }


async def _post_mobile_money(client, event, **header_kwargs):
    body = json.dumps(event).encode("utf-8")
    return await client.post("/webhooks/mobile-money", content=body, headers=_signed_headers(body, **header_kwargs))


def _stripe_headers(payload: bytes, secret: str = STRIPE_SECRET) -> dict[str, str]:
    ts = int(time.time())
    signed = f"{ts}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return {"Content-Type": "application/json", "Stripe-Signature": f"t={ts},v1={signature}"}


def _stripe_event(session_id, *, event_type="checkout.session.completed", event_id="evt_1", amount_total=5000):
    return {
        "id": event_id,
        "type": event_type,
        "data": {
            "object": {
                "id": session_id,
                "amount_total": amount_total,
                "currency": "usd",
                "customer_details": {"email": "donor@example.org"},
                "payment_intent": "pi_123",
                "metadata": {"project_id": "1"},
            }
        },
    }


def _project_amount(db_session, project) -> Decimal:
    return db_session.scalar(select(Project.current_amount).where(Project.id == project.id))


@pytest.mark.anyio
async def test_mobile_money_success_completes_and_credits(client, db_session, make_project, sms_sent):
    project = make_project(currency="KES")
    donation = _donation(db_session, project, "REF-1")

    response = await _post_mobile_money(client, _mobile_money_event("REF-1"))

    assert response.status_code == 200, response.text
    body = response.json()
    assert body == {"received": True, "duplicate": False, "status": "completed", "transaction_id": donation.id}

    db_session.expire_all()
    stored = db_session.get(DonationTransaction, donation.id)
    assert stored.status == DonationStatus.COMPLETED
    assert stored.tx_hash == "MPX123"
    assert stored.mobile_money_provider == "M-Pesa"
    assert _project_amount(db_session, project) == Decimal("50.00")
    assert db_session.scalars(select(ImpactMetrics)).one().water_access_improved == 100
    assert len(sms_sent) == 1
    assert sms_sent[0][0] == "+254712345678"


@pytest.mark.anyio
async def test_duplicate_delivery_applies_once(client, db_session, make_project, sms_sent):
    project = make_project(currency="KES")
    _donation(db_session, project, "REF-1")
    event = _mobile_money_event("REF-1")

    first = await _post_mobile_money(client, event)
    second = await _post_mobile_money(client, event)

    assert first.json()["duplicate"] is False
    assert second.status_code == 200
    assert second.json()["duplicate"] is True
    assert second.json()["status"] == "completed"

    db_session.expire_all()
    assert _project_amount(db_session, project) == Decimal("50.00")
    assert db_session.scalars(select(ImpactMetrics)).one().water_access_improved == 100
    assert db_session.scalar(select(func.count(PaymentWebhookEvent.id))) == 1
    assert db_session.scalar(select(func.count(ImpactEvent.id))) == 1
    assert len(sms_sent) == 1


@pytest.mark.anyio
async def test_redelivered_success_with_new_id_does_not_double_credit(client, db_session, make_project, sms_sent):
    project = make_project(currency="KES")
    _donation(db_session, project, "REF-1")

    await _post_mobile_money(client, _mobile_money_event("REF-1", transaction_id="MPX1"))
    again = await _post_mobile_money(client, _mobile_money_event("REF-1", transaction_id="MPX2"))

    assert again.json()["duplicate"] is False
    db_session.expire_all()
    assert _project_amount(db_session, project) == Decimal("50.00")
    assert db_session.scalar(select(func.count(ImpactEvent.id))) == 1


@pytest.mark.anyio
async def test_redelivery_finishes_impact_that_failed_after_commit(
    client, db_session, make_project, sms_sent, monkeypatch
):
    project = make_project(currency="KES")
    _donation(db_session, project, "REF-1")
    event = _mobile_money_event("REF-1")
    apply_impact = impact_service.apply_impact
    seen: list[str] = []

    def _flaky_apply_impact(db, **kwargs):
        seen.append(kwargs["source_key"])
        if len(seen) == 1:
            raise PersistenceFailure("Impact metrics unavailable.", code="IMPACT_UPDATE_FAILED")
        return apply_impact(db, **kwargs)

    monkeypatch.setattr(impact_service, "apply_impact", _flaky_apply_impact)

    first = await _post_mobile_money(client, event)
    db_session.expire_all()
    assert first.status_code == 500
    assert db_session.scalars(select(ImpactMetrics)).first() is None

    second = await _post_mobile_money(client, event)
    third = await _post_mobile_money(client, event)

    assert second.json()["duplicate"] is True
    assert third.json()["duplicate"] is True
    db_session.expire_all()
    assert _project_amount(db_session, project) == Decimal("50.00")
    assert db_session.scalars(select(ImpactMetrics)).one().water_access_improved == 100
    assert db_session.scalar(select(func.count(ImpactEvent.id))) == 1
    assert len(set(seen)) == 1


@pytest.mark.anyio
async def test_success_from_second_provider_does_not_double_count_impact(client, db_session, make_project, sms_sent):
    project = make_project(currency="USD")
    _donation(db_session, project, "cs_test_1", amount="50.00", currency="USD")

    await _post_mobile_money(client, _mobile_money_event("cs_test_1"))
    payload = json.dumps(_stripe_event("cs_test_1")).encode("utf-8")
    await client.post("/webhooks/stripe", content=payload, headers=_stripe_headers(payload))

    db_session.expire_all()
    assert db_session.scalar(select(func.count(ImpactEvent.id))) == 1


@pytest.mark.anyio
async def test_failed_after_completed_keeps_completed(client, db_session, make_project, sms_sent):
    project = make_project(currency="KES")
    donation = _donation(db_session, project, "REF-1")

    await _post_mobile_money(client, _mobile_money_event("REF-1"))
    response = await _post_mobile_money(client, _mobile_money_event("REF-1", event_type="payment_failed"))

    assert response.status_code == 200
    assert response.json()["status"] == "completed"
    db_session.expire_all()
    assert db_session.get(DonationTransaction, donation.id).status == DonationStatus.COMPLETED


@pytest.mark.anyio
async def test_pending_moves_to_processing_and_failed_is_terminal(client, db_session, make_project):
    project = make_project(currency="KES")
    donation = _donation(db_session, project, "REF-2")

    pending = await _post_mobile_money(client, _mobile_money_event("REF-2", event_type="payment_pending"))
    failed = await _post_mobile_money(client, _mobile_money_event("REF-2", event_type="payment_failed"))

    assert pending.json()["status"] == "processing"
    assert failed.json()["status"] == "failed"
    db_session.expire_all()
    assert db_session.get(DonationTransaction, donation.id).status == DonationStatus.FAILED
    assert _project_amount(db_session, project) == Decimal("0")
    assert db_session.scalars(select(ImpactMetrics)).first() is None


@pytest.mark.anyio
async def test_credit_is_converted_into_project_currency(client, db_session, make_project, sms_sent):
    project = make_project(currency="USD")
    _donation(db_session, project, "REF-3", amount="1000.00")

    response = await _post_mobile_money(client, _mobile_money_event("REF-3", amount="1000.00"))

    assert response.status_code == 200
    db_session.expire_all()
    assert _project_amount(db_session, project) == Decimal("6.20")
    metrics = db_session.scalars(select(ImpactMetrics)).one()
    assert metrics.local_currency_impact == {"KES": "1000.00"}


@pytest.mark.anyio
async def test_bad_signature_is_unauthorized(client, db_session, make_project):
    project = make_project()
    _donation(db_session, project, "REF-1")

    response = await _post_mobile_money(client, _mobile_money_event("REF-1"), secret="wrong-secret")

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "WEBHOOK_SIGNATURE_INVALID"
    assert db_session.scalars(select(PaymentWebhookEvent)).first() is None


@pytest.mark.anyio
async def test_stale_timestamp_is_unauthorized(client):
    response = await _post_mobile_money(
        client, _mobile_money_event("REF-1"), timestamp=int(time.time()) - 3600
    )

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "WEBHOOK_TIMESTAMP_DRIFT"


@pytest.mark.anyio
async def test_missing_signature_headers_are_unauthorized(client):
    response = await client.post("/webhooks/mobile-money", json=_mobile_money_event("REF-1"))

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "WEBHOOK_SIGNATURE_MISSING"


@pytest.mark.anyio
async def test_next_secret_is_accepted_during_rotation(client, db_session, make_project, monkeypatch, sms_sent):
    monkeypatch.setattr(get_settings(), "mobile_money_webhook_secret_next", "rotated-secret")
    project = make_project(currency="KES")
    _donation(db_session, project, "REF-1")

    response = await _post_mobile_money(client, _mobile_money_event("REF-1"), secret="rotated-secret")

    assert response.status_code == 200
    assert response.json()["status"] == "completed"


@pytest.mark.anyio
async def test_unknown_reference_is_not_found(client, db_session):
    response = await _post_mobile_money(client, _mobile_money_event("REF-UNKNOWN"))

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "TRANSACTION_NOT_FOUND"
    assert db_session.scalars(select(PaymentWebhookEvent)).first() is None


@pytest.mark.anyio
async def test_unknown_event_shape_is_rejected(client):
    event = _mobile_money_event("REF-1", event_type="payment_refunded")

    response = await _post_mobile_money(client, event)

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "INVALID_PAYLOAD"


@pytest.mark.anyio
async def test_stripe_checkout_completed(client, db_session, make_project):
    project = make_project(currency="USD")
    donation = _donation(db_session, project, "cs_test_1", currency="USD")
    payload = json.dumps(_stripe_event("cs_test_1")).encode("utf-8")

    response = await client.post("/webhooks/stripe", content=payload, headers=_stripe_headers(payload))

    assert response.status_code == 200, response.text
    assert response.json()["status"] == "completed"
    db_session.expire_all()
    stored = db_session.get(DonationTransaction, donation.id)
    assert stored.status == DonationStatus.COMPLETED
    assert stored.tx_hash == "pi_123"
    assert _project_amount(db_session, project) == Decimal("50.00")
    assert db_session.scalars(select(ImpactMetrics)).one().water_access_improved == 100

    replay = await client.post("/webhooks/stripe", content=payload, headers=_stripe_headers(payload))
    assert replay.json()["duplicate"] is True


@pytest.mark.anyio
async def test_stripe_expired_session_marks_failed(client, db_session, make_project):
    project = make_project(currency="USD")
    donation = _donation(db_session, project, "cs_test_2", currency="USD")
    payload = json.dumps(
        _stripe_event("cs_test_2", event_type="checkout.session.expired", event_id="evt_2")
    ).encode("utf-8")

    response = await client.post("/webhooks/stripe", content=payload, headers=_stripe_headers(payload))

    assert response.json()["status"] == "failed"
    db_session.expire_all()
    assert db_session.get(DonationTransaction, donation.id).status == DonationStatus.FAILED


@pytest.mark.anyio
async def test_stripe_unhandled_event_is_ignored(client, db_session):
    payload = json.dumps({"id": "evt_3", "type": "customer.created", "data": {"object": {}}}).encode("utf-8")

    response = await client.post("/webhooks/stripe", content=payload, headers=_stripe_headers(payload))

    assert response.status_code == 200
    assert response.json()["status"] == "ignored"
    assert db_session.scalars(select(PaymentWebhookEvent)).first() is None


@pytest.mark.anyio
async def test_stripe_bad_signature_is_rejected(client):
    payload = json.dumps(_stripe_event("cs_test_1")).encode("utf-8")

    response = await client.post(
        "/webhooks/stripe", content=payload, headers=_stripe_headers(payload, secret="whsec_other")
    )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "STRIPE_SIGNATURE_INVALID"


@pytest.mark.anyio
async def test_stripe_disabled_is_unavailable(client, monkeypatch):
    monkeypatch.setattr(get_settings(), "STRIPE_ENABLED", False)
    payload = json.dumps(_stripe_event("cs_test_1")).encode("utf-8")

    response = await client.post("/webhooks/stripe", content=payload, headers=_stripe_headers(payload))

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "STRIPE_DISABLED"


def test_missing_secrets_abort_startup_outside_dev():
    settings = SimpleNamespace(
        app_env="prod",
        mobile_money_webhook_secret=None,
        mobile_money_webhook_secret_next=None,
        STRIPE_ENABLED=True,
        STRIPE_WEBHOOK_SECRET=None,
    )

    with pytest.raises(RuntimeError):
        _assert_webhook_secrets(settings)

    settings.app_env = "dev"
    _assert_webhook_secrets(settings)


@pytest.mark.anyio
async def test_webhook_work_runs_off_the_event_loop(client, db_session, make_project, sms_sent, monkeypatch):
    project = make_project(currency="KES")
    _donation(db_session, project, "REF-1")
    offloaded: list[str] = []

    async def _recording_run_in_threadpool(func, *args, **kwargs):
        offloaded.append(func.__name__)
        return await run_in_threadpool(func, *args, **kwargs)

    monkeypatch.setattr(webhooks_router, "run_in_threadpool", _recording_run_in_threadpool)

    mobile = await _post_mobile_money(client, _mobile_money_event("REF-1"))
    payload = json.dumps(_stripe_event("cs_other", event_type="customer.created")).encode("utf-8")
    stripe_response = await client.post("/webhooks/stripe", content=payload, headers=_stripe_headers(payload))

    assert mobile.json()["status"] == "completed"
    assert stripe_response.json()["status"] == "ignored"
    assert offloaded == ["_handle_mobile_money", "_handle_stripe"]


@pytest.mark.anyio
async def test_iso_timestamp_header_is_accepted(client, db_session, make_project, sms_sent):
    project = make_project(currency="KES")
    _donation(db_session, project, "REF-1")
    body = json.dumps(_mobile_money_event("REF-1")).encode("utf-8")
    ts = utcnow().isoformat().replace("+00:00", "Z")
    headers = {
        "Content-Type": "application/json",
        "X-Webhook-Timestamp": ts,
        "X-Webhook-Signature": compute_webhook_signature(MOBILE_SECRET, body, ts),
    }

    response = await client.post("/webhooks/mobile-money", content=body, headers=headers)

    assert response.status_code == 200, response.text
    assert response.json()["status"] == "completed"
