"""Milestone settlement: approve validations, release funds once, complete the milestone."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import BackgroundTasks
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from fundflow.config import get_settings
from fundflow.models import (
    FundRelease,
    FundReleaseStatus,
    Milestone,
    MilestoneStatus,
    Project,
    SETTLED_MILESTONE_STATES,
    Validation,
    ValidationStatus,
)
from fundflow.services import impact as impact_service
from fundflow.services import notifications
from fundflow.services.fund_release import FundReleaser, get_fund_releaser
from fundflow.utils.audit import log_audit
from fundflow.utils.background import dispatch
from fundflow.utils.errors import Conflict, NotFound, UpstreamFailure
from fundflow.utils.time import seconds_ago, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SettlementResult:
    project_id: int
    milestone_id: int
    milestone_status: MilestoneStatus
    validators_approved: int
    release_reference: str | None
    already_settled: bool = False


def _get_milestone(db: Session, project_id: int, milestone_id: int) -> Milestone:
    milestone = db.get(Milestone, milestone_id, populate_existing=True)
    if milestone is None or milestone.project_id != project_id:
        raise NotFound(
            "Milestone not found for project.",
            code="MILESTONE_NOT_FOUND",
            details={"project_id": project_id, "milestone_id": milestone_id},
        )
    return milestone


def _pair_filter(project_id: int, milestone_id: int):
    return (Validation.project_id == project_id, Validation.milestone_id == milestone_id)


def approve_pending_validations(db: Session, project_id: int, milestone_id: int) -> int:
    """Mark every pending validation of the pair approved and commit."""

    result = db.execute(
        update(Validation)
        .where(*_pair_filter(project_id, milestone_id), Validation.status == ValidationStatus.PENDING)
        .values(status=ValidationStatus.APPROVED, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount or 0


def _approved_validation_ids(db: Session, project_id: int, milestone_id: int) -> list[int]:
    stmt = (
        select(Validation.id)
        .where(*_pair_filter(project_id, milestone_id), Validation.status == ValidationStatus.APPROVED)
        .order_by(Validation.id)
    )
    return list(db.scalars(stmt).all())


def _claim_release(db: Session, milestone: Milestone, project: Project) -> FundRelease | None:
    """Claim the release of ``milestone``.

    Returns ``None`` when the claim is won and the collaborator must be
    called, or the existing ``released`` row when only the milestone update is
    outstanding.
    """

    existing = db.scalars(
        select(FundRelease)
        .where(FundRelease.milestone_id == milestone.id)
        .execution_options(populate_existing=True)
    ).first()

    if existing is None:
        db.add(
            FundRelease(
                project_id=project.id,
                milestone_id=milestone.id,
                amount=milestone.target_amount,
                currency=project.currency,
                status=FundReleaseStatus.PENDING,
                attempts=1,
            )
        )
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise Conflict(
                "Fund release already in progress for this milestone.",
                code="SETTLEMENT_IN_PROGRESS",
                details={"milestone_id": milestone.id},
            )
        return None

    if existing.status == FundReleaseStatus.RELEASED:
        return existing

    previous_status, attempts = existing.status, existing.attempts
    # A failed release may be retried; a pending one only once its lease has run out.
    lease_expired = and_(
        FundRelease.status == FundReleaseStatus.PENDING,
        FundRelease.updated_at < seconds_ago(get_settings().FUND_RELEASE_CLAIM_TTL_SECONDS),
    )
    result = db.execute(
        update(FundRelease)
        .where(
            FundRelease.id == existing.id,
            or_(FundRelease.status == FundReleaseStatus.FAILED, lease_expired),
        )
        .values(
            status=FundReleaseStatus.PENDING,
            attempts=FundRelease.attempts + 1,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount == 1:
        if previous_status == FundReleaseStatus.PENDING:
            logger.warning(
                "Taking over abandoned fund release claim",
                extra={"milestone_id": milestone.id, "attempts": attempts + 1},
            )
        return None

    raise Conflict(
        "Fund release already in progress for this milestone.",
        code="SETTLEMENT_IN_PROGRESS",
        details={"milestone_id": milestone.id},
    )


def _record_release_failure(db: Session, milestone: Milestone, error: str) -> None:
    try:
        db.execute(
            update(FundRelease)
            .where(FundRelease.milestone_id == milestone.id, FundRelease.status == FundReleaseStatus.PENDING)
            .values(status=FundReleaseStatus.FAILED, last_error=error[:2000], updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        log_audit(
            db,
            actor="system",
            action="FUND_RELEASE_FAILED",
            entity="Milestone",
            entity_id=milestone.id,
            data={"project_id": milestone.project_id, "error": error},
        )
        db.commit()
    except SQLAlchemyError:
        # The claim stays pending and is reclaimed once its lease expires.
        db.rollback()
        logger.exception("Unable to record fund release failure", extra={"milestone_id": milestone.id})


def _record_release_success(db: Session, milestone: Milestone, reference: str) -> None:
    db.execute(
        update(FundRelease)
        .where(FundRelease.milestone_id == milestone.id, FundRelease.status == FundReleaseStatus.PENDING)
        .values(
            status=FundReleaseStatus.RELEASED,
            external_ref=reference,
            last_error=None,
            released_at=utcnow(),
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    log_audit(
        db,
        actor="system",
        action="FUND_RELEASED",
        entity="Milestone",
        entity_id=milestone.id,
        data={"project_id": milestone.project_id, "reference": reference},
    )
    db.commit()


def _complete_milestone(db: Session, milestone: Milestone) -> tuple[bool, int]:
    """Advance the milestone to ``completed`` unless it is already settled."""

    approved = db.scalar(
        select(func.count(Validation.id)).where(
            *_pair_filter(milestone.project_id, milestone.id),
            Validation.status == ValidationStatus.APPROVED,
        )
    ) or 0
    now = utcnow()
    result = db.execute(
        update(Milestone)
        .where(Milestone.id == milestone.id, Milestone.status.not_in(SETTLED_MILESTONE_STATES))
        .values(
            status=MilestoneStatus.COMPLETED,
            verified_at=now,
            validators_approved=approved,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    won = result.rowcount == 1
    if won:
        log_audit(
            db,
            actor="system",
            action="MILESTONE_COMPLETED",
            entity="Milestone",
            entity_id=milestone.id,
            data={"project_id": milestone.project_id, "validators_approved": approved},
        )
    db.commit()
    return won, approved


def settle_milestone(
    db: Session,
    project_id: int,
    milestone_id: int,
    *,
    releaser: FundReleaser | None = None,
    background: BackgroundTasks | None = None,
) -> SettlementResult:
    """Settle a milestone whose validations reached consensus.

    Safe to call repeatedly: a settled milestone is a no-op and the fund
    release collaborator is called at most once per successful release.
    """

    milestone = _get_milestone(db, project_id, milestone_id)
    if milestone.status in SETTLED_MILESTONE_STATES:
        logger.info(
            "Milestone already settled",
            extra={"project_id": project_id, "milestone_id": milestone_id},
        )
        release = db.scalars(select(FundRelease).where(FundRelease.milestone_id == milestone_id)).first()
        return SettlementResult(
            project_id=project_id,
            milestone_id=milestone_id,
            milestone_status=milestone.status,
            validators_approved=milestone.validators_approved,
            release_reference=release.external_ref if release else None,
            already_settled=True,
        )

    project = db.get(Project, project_id)
    approved_now = approve_pending_validations(db, project_id, milestone_id)
    logger.info(
        "Validations approved for settlement",
        extra={"project_id": project_id, "milestone_id": milestone_id, "approved": approved_now},
    )

    existing = _claim_release(db, milestone, project)
    if existing is not None:
        reference = existing.external_ref
        logger.info(
            "Fund release already recorded; completing milestone only",
            extra={"milestone_id": milestone_id, "reference": reference},
        )
    else:
        validation_ids = _approved_validation_ids(db, project_id, milestone_id)
        db.commit()
        releaser = releaser or get_fund_releaser()
        try:
            receipt = releaser.release(project_id, milestone_id, validation_ids)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "Fund release failed",
                exc_info=True,
                extra={"project_id": project_id, "milestone_id": milestone_id},
            )
            _record_release_failure(db, milestone, str(exc) or exc.__class__.__name__)
            raise UpstreamFailure(
                "Fund release failed; settlement can be retried.",
                code="FUND_RELEASE_FAILED",
                details={"project_id": project_id, "milestone_id": milestone_id},
            ) from exc
        reference = receipt.reference
        _record_release_success(db, milestone, reference)
        logger.info(
            "Milestone funds released",
            extra={"project_id": project_id, "milestone_id": milestone_id, "reference": reference},
        )

    won, approved = _complete_milestone(db, milestone)
    db.expire_all()

    if won:
        dispatch(
            background,
            notifications.notify_project_stakeholders,
            project_id,
            f"Milestone {milestone.idx} '{milestone.title}' verified by the community; funds released.",
        )
        if get_settings().IMPACT_ON_MILESTONE_COMPLETION:
            impact_service.apply_impact(
                db,
                source_key=f"milestone:{milestone_id}",
                amount=milestone.target_amount,
                currency=project.currency,
                category=project.category,
            )

    return SettlementResult(
        project_id=project_id,
        milestone_id=milestone_id,
        milestone_status=milestone.status,
        validators_approved=approved,
        release_reference=reference,
        already_settled=not won,
    )


__all__ = ["SettlementResult", "approve_pending_validations", "settle_milestone"]
