"""Community validation intake and consensus re-evaluation."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Sequence

import httpx
from fastapi import BackgroundTasks
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fundflow.config import GPS_LAT_MAX, GPS_LAT_MIN, GPS_LNG_MAX, GPS_LNG_MIN, get_settings
from fundflow.models import (
    CommunityValidator,
    Milestone,
    Project,
    SETTLED_MILESTONE_STATES,
    Validation,
    ValidationStatus,
    ValidatorStatus,
)
from fundflow.schemas import ConsensusRead, ValidationCreate, ValidationSubmitResult
from fundflow.services import notifications
from fundflow.services import settlement as settlement_service
from fundflow.services.consensus import ConsensusDecision, ConsensusOutcome, evaluate_consensus
from fundflow.utils.audit import log_audit
from fundflow.utils.background import dispatch
from fundflow.utils.errors import Conflict, InvalidInput, NotFound, OutOfBounds, PersistenceFailure
from fundflow.utils.time import utcnow

logger = logging.getLogger(__name__)

SUBMITTED_MESSAGE = "Impact verification submitted successfully"


def check_photo_urls(photos: Sequence[str]) -> None:
    """HEAD each photo URL and log the inaccessible ones."""

    timeout = get_settings().PHOTO_CHECK_TIMEOUT_SECONDS
    for url in photos:
        try:
            response = httpx.head(url, timeout=timeout, follow_redirects=True)
        except httpx.HTTPError as exc:
            logger.warning("Error checking photo URL", extra={"url": url, "error": str(exc)})
            continue
        if response.status_code >= 400:
            logger.warning("Photo URL not accessible", extra={"url": url, "status_code": response.status_code})


@dataclass(frozen=True)
class CheckedSubmission:
    project_id: int
    milestone_id: int
    validator_id: int
    rating: int


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _as_int(value: Any) -> int | None:
    """Return ``value`` as an int when it holds a whole number, else ``None``."""

    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit() or (text.startswith("-") and text[1:].isdigit()):
            return int(text)
    return None


def _validate_submission(payload: ValidationCreate) -> CheckedSubmission:
    id_fields = ("project_id", "milestone_id", "validator_id")
    missing = [name for name in id_fields if _is_blank(getattr(payload, name))]
    if missing:
        raise InvalidInput(
            "Missing required fields: project_id, milestone_id, validator_id",
            code="MISSING_FIELDS",
            details={"missing": missing},
        )
    ids = {name: _as_int(getattr(payload, name)) for name in id_fields}
    malformed = [name for name, value in ids.items() if value is None]
    if malformed:
        raise InvalidInput(
            "Identifiers must be whole numbers",
            code="INVALID_IDENTIFIERS",
            details={"invalid": malformed},
        )

    gps = payload.gps_location
    if gps is not None and not (GPS_LAT_MIN <= gps.lat <= GPS_LAT_MAX and GPS_LNG_MIN <= gps.lng <= GPS_LNG_MAX):
        raise OutOfBounds(
            "GPS coordinates appear to be outside Africa",
            details={"lat": gps.lat, "lng": gps.lng},
        )

    rating = _as_int(payload.rating)
    if rating is None or not 1 <= rating <= 5:
        raise InvalidInput(
            "Rating must be between 1 and 5",
            code="INVALID_RATING",
            details={"rating": str(payload.rating) if payload.rating is not None else None},
        )
    return CheckedSubmission(rating=rating, **ids)


def _load_targets(db: Session, checked: CheckedSubmission) -> tuple[CommunityValidator, Project, Milestone]:
    validator = db.get(CommunityValidator, checked.validator_id)
    if validator is None or validator.status != ValidatorStatus.ACTIVE:
        raise NotFound(
            "Validator not found or inactive",
            code="VALIDATOR_NOT_FOUND",
            details={"validator_id": checked.validator_id},
        )

    project = db.get(Project, checked.project_id)
    if project is None:
        raise NotFound("Project not found", code="PROJECT_NOT_FOUND", details={"project_id": checked.project_id})

    milestone = db.get(Milestone, checked.milestone_id, populate_existing=True)
    if milestone is None or milestone.project_id != project.id:
        raise NotFound(
            "Milestone not found for project",
            code="MILESTONE_NOT_FOUND",
            details={"project_id": checked.project_id, "milestone_id": checked.milestone_id},
        )
    return validator, project, milestone


def _ensure_first_vote(db: Session, checked: CheckedSubmission) -> None:
    stmt = select(Validation.id).where(
        Validation.project_id == checked.project_id,
        Validation.milestone_id == checked.milestone_id,
        Validation.validator_id == checked.validator_id,
    )
    if db.scalars(stmt).first() is not None:
        raise Conflict(
            "Validator already submitted a validation for this milestone",
            code="DUPLICATE_VALIDATION",
            details={"validator_id": checked.validator_id, "milestone_id": checked.milestone_id},
        )


def list_validations(db: Session, project_id: int, milestone_id: int) -> list[Validation]:
    stmt = (
        select(Validation)
        .where(Validation.project_id == project_id, Validation.milestone_id == milestone_id)
        .order_by(Validation.id)
        .execution_options(populate_existing=True)
    )
    return list(db.scalars(stmt).all())


def get_validation(db: Session, validation_id: int) -> Validation:
    validation = db.get(Validation, validation_id, populate_existing=True)
    if validation is None:
        raise NotFound(
            "Validation not found", code="VALIDATION_NOT_FOUND", details={"validation_id": validation_id}
        )
    return validation


def evaluate_milestone(db: Session, milestone: Milestone) -> ConsensusDecision:
    """Score the full, freshly loaded validation set of ``milestone``."""

    settings = get_settings()
    validations = list_validations(db, milestone.project_id, milestone.id)
    return evaluate_consensus(
        validations,
        required_validations=milestone.validators_required or settings.CONSENSUS_REQUIRED_VALIDATIONS,
        rating_threshold=settings.CONSENSUS_RATING_THRESHOLD,
        allow_duplicate_validator_votes=settings.ALLOW_DUPLICATE_VALIDATOR_VOTES,
    )


def get_consensus(db: Session, project_id: int, milestone_id: int) -> ConsensusRead:
    milestone = db.get(Milestone, milestone_id, populate_existing=True)
    if milestone is None or milestone.project_id != project_id:
        raise NotFound(
            "Milestone not found for project",
            code="MILESTONE_NOT_FOUND",
            details={"project_id": project_id, "milestone_id": milestone_id},
        )
    decision = evaluate_milestone(db, milestone)
    return ConsensusRead(
        project_id=project_id,
        milestone_id=milestone_id,
        outcome=decision.outcome.value,
        reached=decision.reached,
        required=decision.required,
        approved=decision.approved,
        pending=decision.pending,
        counted=decision.counted,
        average_rating=decision.average_rating,
        milestone_status=milestone.status.value,
    )


def _reject_pending(db: Session, milestone: Milestone) -> int:
    result = db.execute(
        update(Validation)
        .where(
            Validation.project_id == milestone.project_id,
            Validation.milestone_id == milestone.id,
            Validation.status == ValidationStatus.PENDING,
        )
        .values(status=ValidationStatus.REJECTED, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    log_audit(
        db,
        actor="system",
        action="VALIDATIONS_REJECTED_LOW_CONSENSUS",
        entity="Milestone",
        entity_id=milestone.id,
        data={"project_id": milestone.project_id, "rejected": result.rowcount},
    )
    db.commit()
    return result.rowcount or 0


def reevaluate_milestone(
    db: Session, milestone: Milestone, *, background: BackgroundTasks | None = None
) -> ConsensusDecision:
    """Re-score ``milestone`` and act on the decision; failures are logged only."""

    decision = evaluate_milestone(db, milestone)
    log_extra = {
        "project_id": milestone.project_id,
        "milestone_id": milestone.id,
        "outcome": decision.outcome.value,
        "average_rating": str(decision.average_rating) if decision.average_rating is not None else None,
    }
    logger.info("Consensus evaluated", extra=log_extra)

    if decision.outcome is ConsensusOutcome.REACHED and milestone.status not in SETTLED_MILESTONE_STATES:
        try:
            settlement_service.settle_milestone(db, milestone.project_id, milestone.id, background=background)
        except Exception:  # noqa: BLE001
            db.rollback()
            logger.exception("Milestone settlement after consensus failed", extra=log_extra)
    elif decision.outcome is ConsensusOutcome.BELOW_THRESHOLD and get_settings().AUTO_REJECT_LOW_CONSENSUS:
        try:
            rejected = _reject_pending(db, milestone)
            logger.info("Pending validations rejected below threshold", extra={**log_extra, "rejected": rejected})
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Rejecting low-consensus validations failed", extra=log_extra)
    return decision


def submit_validation(
    db: Session,
    payload: ValidationCreate,
    *,
    background: BackgroundTasks | None = None,
) -> ValidationSubmitResult:
    """Record one community validation and re-run consensus for its milestone.

    Checks run in a fixed order and the first failure wins; nothing is
    persisted when any check fails.
    """

    settings = get_settings()
    checked = _validate_submission(payload)
    validator, project, milestone = _load_targets(db, checked)
    if not settings.ALLOW_DUPLICATE_VALIDATOR_VOTES:
        _ensure_first_vote(db, checked)

    gps = payload.gps_location
    validation = Validation(
        project_id=project.id,
        milestone_id=milestone.id,
        validator_id=validator.id,
        rating=checked.rating,
        comment=payload.comment,
        photos=list(payload.photos),
        gps_lat=gps.lat if gps else None,
        gps_lng=gps.lng if gps else None,
        gps_accuracy=gps.accuracy if gps else None,
        language=payload.language,
        status=ValidationStatus.PENDING,
    )
    try:
        db.add(validation)
        db.flush()
        db.execute(
            update(CommunityValidator)
            .where(CommunityValidator.id == validator.id)
            .values(validation_count=CommunityValidator.validation_count + 1)
            .execution_options(synchronize_session=False)
        )
        log_audit(
            db,
            actor=f"validator:{validator.id}",
            action="VALIDATION_SUBMITTED",
            entity="Validation",
            entity_id=validation.id,
            data={
                "project_id": project.id,
                "milestone_id": milestone.id,
                "rating": checked.rating,
                "photos": len(payload.photos),
                "wallet_address": validator.wallet_address,
            },
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to record validation", exc_info=True, extra={"milestone_id": milestone.id})
        raise PersistenceFailure("Failed to record validation") from exc

    logger.info(
        "Validation recorded",
        extra={
            "validation_id": validation.id,
            "project_id": project.id,
            "milestone_id": milestone.id,
            "validator_id": validator.id,
            "rating": checked.rating,
        },
    )

    if settings.PHOTO_CHECK_ENABLED and payload.photos:
        dispatch(background, check_photo_urls, list(payload.photos))

    reevaluate_milestone(db, milestone, background=background)

    dispatch(
        background,
        notifications.notify_project_stakeholders,
        project.id,
        f"New validation for milestone {milestone.idx}: rating {checked.rating}/5",
    )

    return ValidationSubmitResult(
        validation_id=validation.id,
        status=ValidationStatus.PENDING,
        message=SUBMITTED_MESSAGE,
    )


__all__ = [
    "SUBMITTED_MESSAGE",
    "check_photo_urls",
    "evaluate_milestone",
    "get_consensus",
    "get_validation",
    "list_validations",
    "reevaluate_milestone",
    "submit_validation",
]
