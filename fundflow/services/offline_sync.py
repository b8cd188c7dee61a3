"""Reconciliation of donation batches queued by offline clients."""
from __future__ import annotations

import logging
from typing import Any, Mapping

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fundflow.models import DonationStatus, DonationTransaction
from fundflow.schemas import (
    OfflineSyncFailed,
    OfflineSyncProcessed,
    OfflineSyncResult,
    OfflineTransactionIn,
)
from fundflow.services.donations import ensure_donation_target
from fundflow.utils.audit import log_audit
from fundflow.utils.errors import DomainError, InvalidInput

logger = logging.getLogger(__name__)


def _original_id(raw: Any) -> str | None:
    if isinstance(raw, Mapping) and raw.get("id") is not None:
        return str(raw["id"])
    return None


def _describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "item"
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)


def _persist_item(db: Session, item: OfflineTransactionIn, original_id: str | None) -> DonationTransaction:
    ensure_donation_target(db, item.project_id, item.milestone_id)
    transaction = DonationTransaction(
        project_id=item.project_id,
        milestone_id=item.milestone_id,
        amount=item.amount,
        currency=item.currency,
        payment_method=item.payment_method,
        status=DonationStatus.PROCESSING,
        offline=False,
        donor_address=item.donor_address,
        mobile_money_provider=item.mobile_money_provider,
        client_reference=original_id,
    )
    db.add(transaction)
    db.flush()
    log_audit(
        db,
        actor="offline-sync",
        action="OFFLINE_TRANSACTION_SYNCED",
        entity="DonationTransaction",
        entity_id=transaction.id,
        data={
            "client_reference": original_id,
            "project_id": item.project_id,
            "amount": str(item.amount),
            "currency": item.currency,
            "donor_address": item.donor_address,
        },
    )
    db.commit()
    return transaction


def sync_offline_transactions(db: Session, body: Any) -> OfflineSyncResult:
    """Persist every queued transaction independently.

    Each item commits on its own; a failing item is rolled back and reported
    with its client id without affecting its siblings.
    """

    transactions = body.get("transactions") if isinstance(body, Mapping) else None
    if not isinstance(transactions, list):
        raise InvalidInput("Invalid transactions data", code="INVALID_TRANSACTIONS")

    processed: list[OfflineSyncProcessed] = []
    failed: list[OfflineSyncFailed] = []

    for raw in transactions:
        original_id = _original_id(raw)
        try:
            item = OfflineTransactionIn.model_validate(raw)
            transaction = _persist_item(db, item, original_id)
        except ValidationError as exc:
            db.rollback()
            failed.append(OfflineSyncFailed(original_id=original_id, error=_describe_validation_error(exc)))
            logger.warning("Offline transaction rejected", extra={"original_id": original_id})
            continue
        except DomainError as exc:
            db.rollback()
            failed.append(OfflineSyncFailed(original_id=original_id, error=exc.message))
            logger.warning(
                "Offline transaction rejected", extra={"original_id": original_id, "code": exc.code}
            )
            continue
        except SQLAlchemyError:
            db.rollback()
            failed.append(OfflineSyncFailed(original_id=original_id, error="Failed to record transaction"))
            logger.error("Error processing offline transaction", exc_info=True, extra={"original_id": original_id})
            continue

        processed.append(OfflineSyncProcessed(original_id=original_id, new_id=transaction.id))

    logger.info("Offline batch synced", extra={"processed": len(processed), "failed": len(failed)})
    return OfflineSyncResult(
        processed=len(processed),
        failed=len(failed),
        processed_transactions=processed,
        failed_transactions=failed,
    )


__all__ = ["sync_offline_transactions"]
