"""Project catalogue and validator registry services."""
from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from fundflow.config import get_settings
from fundflow.models import CommunityValidator, Milestone, Project, ProjectCategory
from fundflow.schemas import ProjectCreate, ValidatorCreate
from fundflow.utils.audit import log_audit
from fundflow.utils.errors import Conflict, NotFound

logger = logging.getLogger(__name__)


def create_project(db: Session, payload: ProjectCreate, *, actor: str = "system") -> Project:
    """Persist a project together with its ordered milestones."""

    settings = get_settings()
    project = Project(
        title=payload.title,
        description=payload.description,
        target_amount=payload.target_amount,
        currency=payload.currency,
        category=payload.category,
        region_id=payload.region_id,
        ngo_address=payload.ngo_address,
        images=list(payload.images),
    )
    for item in sorted(payload.milestones, key=lambda milestone: milestone.idx):
        project.milestones.append(
            Milestone(
                idx=item.idx,
                title=item.title,
                description=item.description,
                target_amount=item.target_amount,
                status=item.status,
                validators_required=item.validators_required or settings.CONSENSUS_REQUIRED_VALIDATIONS,
            )
        )
    db.add(project)
    db.flush()
    log_audit(
        db,
        actor=actor,
        action="PROJECT_CREATED",
        entity="Project",
        entity_id=project.id,
        data={
            "title": project.title,
            "category": project.category.value,
            "region_id": project.region_id,
            "milestones": len(payload.milestones),
        },
    )
    db.commit()
    db.refresh(project)
    logger.info("Project created", extra={"project_id": project.id, "category": project.category.value})
    return project


def get_project(db: Session, project_id: int) -> Project:
    stmt = select(Project).options(selectinload(Project.milestones)).where(Project.id == project_id)
    project = db.scalars(stmt).first()
    if project is None:
        raise NotFound("Project not found.", code="PROJECT_NOT_FOUND", details={"project_id": project_id})
    return project


def list_projects(
    db: Session,
    *,
    category: ProjectCategory | None = None,
    region_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Project]:
    stmt = select(Project).options(selectinload(Project.milestones)).order_by(Project.id)
    if category is not None:
        stmt = stmt.where(Project.category == category)
    if region_id is not None:
        stmt = stmt.where(Project.region_id == region_id)
    return list(db.scalars(stmt.offset(offset).limit(limit)).all())


def create_validator(db: Session, payload: ValidatorCreate) -> CommunityValidator:
    validator = CommunityValidator(
        wallet_address=payload.wallet_address,
        region_id=payload.region_id,
        languages=list(payload.languages),
        reputation_score=payload.reputation_score,
    )
    db.add(validator)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise Conflict(
            "A validator with this wallet address already exists.",
            code="VALIDATOR_EXISTS",
        )
    log_audit(
        db,
        actor="system",
        action="VALIDATOR_REGISTERED",
        entity="CommunityValidator",
        entity_id=validator.id,
        data={"wallet_address": validator.wallet_address, "region_id": validator.region_id},
    )
    db.commit()
    db.refresh(validator)
    logger.info("Validator registered", extra={"validator_id": validator.id, "region_id": validator.region_id})
    return validator


def get_validator(db: Session, validator_id: int) -> CommunityValidator:
    validator = db.get(CommunityValidator, validator_id)
    if validator is None:
        raise NotFound(
            "Validator not found.", code="VALIDATOR_NOT_FOUND", details={"validator_id": validator_id}
        )
    return validator


__all__ = ["create_project", "create_validator", "get_project", "get_validator", "list_projects"]
