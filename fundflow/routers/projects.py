"""Project catalogue endpoints."""
from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

from fundflow.db import get_db
from fundflow.models import Project, ProjectCategory, Validation
from fundflow.schemas import ConsensusRead, ProjectCreate, ProjectRead, ValidationRead
from fundflow.services import projects as project_service
from fundflow.services import validations as validation_service
from fundflow.services.consensus import ConsensusOutcome
from fundflow.services.settlement import settle_milestone
from fundflow.utils.errors import Conflict

router = APIRouter(prefix="/projects", tags=["projects"])


@router.post("", response_model=ProjectRead, status_code=status.HTTP_201_CREATED)
def create_project(payload: ProjectCreate, db: Session = Depends(get_db)) -> Project:
    return project_service.create_project(db, payload)


@router.get("", response_model=list[ProjectRead])
def list_projects(
    category: ProjectCategory | None = None,
    region_id: str | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> list[Project]:
    return project_service.list_projects(db, category=category, region_id=region_id, limit=limit, offset=offset)


@router.get("/{project_id}", response_model=ProjectRead)
def get_project(project_id: int, db: Session = Depends(get_db)) -> Project:
    return project_service.get_project(db, project_id)


@router.get("/{project_id}/milestones/{milestone_id}/validations", response_model=list[ValidationRead])
def list_milestone_validations(
    project_id: int, milestone_id: int, db: Session = Depends(get_db)
) -> list[Validation]:
    return validation_service.list_validations(db, project_id, milestone_id)


@router.get("/{project_id}/milestones/{milestone_id}/consensus", response_model=ConsensusRead)
def read_consensus(project_id: int, milestone_id: int, db: Session = Depends(get_db)) -> ConsensusRead:
    return validation_service.get_consensus(db, project_id, milestone_id)


@router.post("/{project_id}/milestones/{milestone_id}/settle")
def settle(
    project_id: int,
    milestone_id: int,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
) -> dict[str, object]:
    """Retry settlement of a milestone whose consensus holds."""

    consensus = validation_service.get_consensus(db, project_id, milestone_id)
    if consensus.milestone_status not in ("completed", "verified") and consensus.outcome != ConsensusOutcome.REACHED.value:
        raise Conflict(
            "Community consensus has not been reached for this milestone.",
            code="CONSENSUS_NOT_REACHED",
            details={
                "outcome": consensus.outcome,
                "average_rating": str(consensus.average_rating) if consensus.average_rating is not None else None,
            },
        )
    result = settle_milestone(db, project_id, milestone_id, background=background)
    return {
        "project_id": result.project_id,
        "milestone_id": result.milestone_id,
        "milestone_status": result.milestone_status.value,
        "validators_approved": result.validators_approved,
        "release_reference": result.release_reference,
        "already_settled": result.already_settled,
    }
