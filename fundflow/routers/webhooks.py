"""Payment provider webhook endpoints.

The raw body is read on the event loop; verification and the database work run
in the threadpool like the other synchronous endpoints.
"""
from __future__ import annotations

import logging
from typing import Mapping

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from fundflow.db import get_db
from fundflow.schemas import WebhookAck
from fundflow.services import payment_events

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _handle_stripe(
    payload: bytes, signature: str | None, db: Session, background: BackgroundTasks
) -> WebhookAck:
    event = payment_events.verify_stripe_payload(payload, signature)
    outcome = payment_events.parse_stripe_event(event)
    if outcome is None:
        return WebhookAck(status="ignored")
    return payment_events.apply_payment_outcome(db, outcome, background=background)


def _handle_mobile_money(
    raw_body: bytes, headers: Mapping[str, str], db: Session, background: BackgroundTasks
) -> WebhookAck:
    payment_events.verify_mobile_money_signature(raw_body, headers)
    outcome = payment_events.parse_mobile_money_event(raw_body)
    ack = payment_events.apply_payment_outcome(db, outcome, background=background)
    logger.info(
        "Mobile money webhook handled",
        extra={"event_id": outcome.event_id, "duplicate": ack.duplicate, "status": ack.status},
    )
    return ack


@router.post("/stripe", response_model=WebhookAck, status_code=status.HTTP_200_OK)
async def stripe_webhook(
    request: Request,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
) -> WebhookAck:
    payload = await request.body()
    return await run_in_threadpool(
        _handle_stripe, payload, request.headers.get("Stripe-Signature"), db, background
    )


@router.post("/mobile-money", response_model=WebhookAck, status_code=status.HTTP_200_OK)
async def mobile_money_webhook(
    request: Request,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
) -> WebhookAck:
    raw_body = await request.body()
    headers = {k: v for k, v in request.headers.items()}
    return await run_in_threadpool(_handle_mobile_money, raw_body, headers, db, background)


__all__ = ["router"]
