"""Donation transaction intake and lookup."""
from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fundflow.models import DonationStatus, DonationTransaction, Milestone, Project
from fundflow.schemas import DonationCreate
from fundflow.utils.audit import log_audit
from fundflow.utils.errors import Conflict, NotFound

logger = logging.getLogger(__name__)


def ensure_donation_target(db: Session, project_id: int, milestone_id: int | None) -> Project:
    """Return the project a donation targets, checking the optional milestone belongs to it."""

    project = db.get(Project, project_id)
    if project is None:
        raise NotFound("Project not found", code="PROJECT_NOT_FOUND", details={"project_id": project_id})
    if milestone_id is not None:
        milestone = db.get(Milestone, milestone_id)
        if milestone is None or milestone.project_id != project_id:
            raise NotFound(
                "Milestone not found for project",
                code="MILESTONE_NOT_FOUND",
                details={"project_id": project_id, "milestone_id": milestone_id},
            )
    return project


def create_donation(db: Session, payload: DonationCreate) -> DonationTransaction:
    """Record a donation intent; completion only ever comes from a payment event."""

    ensure_donation_target(db, payload.project_id, payload.milestone_id)
    donation = DonationTransaction(
        project_id=payload.project_id,
        milestone_id=payload.milestone_id,
        amount=payload.amount,
        currency=payload.currency,
        payment_method=payload.payment_method,
        status=DonationStatus.QUEUED if payload.offline else DonationStatus.PENDING,
        donor_address=payload.donor_address,
        offline=payload.offline,
        payment_reference=payload.payment_reference,
        mobile_money_provider=payload.mobile_money_provider,
    )
    db.add(donation)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise Conflict(
            "A donation with this payment reference already exists.",
            code="PAYMENT_REFERENCE_EXISTS",
            details={"payment_reference": payload.payment_reference},
        )
    log_audit(
        db,
        actor="donor",
        action="DONATION_CREATED",
        entity="DonationTransaction",
        entity_id=donation.id,
        data={
            "project_id": donation.project_id,
            "amount": str(donation.amount),
            "currency": donation.currency,
            "payment_method": donation.payment_method.value,
            "donor_address": donation.donor_address,
        },
    )
    db.commit()
    db.refresh(donation)
    logger.info(
        "Donation recorded",
        extra={"donation_id": donation.id, "project_id": donation.project_id, "status": donation.status.value},
    )
    return donation


def get_donation(db: Session, donation_id: int) -> DonationTransaction:
    donation = db.get(DonationTransaction, donation_id, populate_existing=True)
    if donation is None:
        raise NotFound("Donation not found", code="DONATION_NOT_FOUND", details={"donation_id": donation_id})
    return donation


def find_by_payment_reference(db: Session, reference: str) -> DonationTransaction | None:
    stmt = (
        select(DonationTransaction)
        .where(DonationTransaction.payment_reference == reference)
        .execution_options(populate_existing=True)
    )
    return db.scalars(stmt).first()


__all__ = ["create_donation", "ensure_donation_target", "find_by_payment_reference", "get_donation"]
