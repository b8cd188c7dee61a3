"""Community validator registry endpoints."""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from fundflow.db import get_db
from fundflow.models import CommunityValidator
from fundflow.schemas import ValidatorCreate, ValidatorRead
from fundflow.services import projects as project_service

router = APIRouter(prefix="/validators", tags=["validators"])


@router.post("", response_model=ValidatorRead, status_code=status.HTTP_201_CREATED)
def register_validator(payload: ValidatorCreate, db: Session = Depends(get_db)) -> CommunityValidator:
    return project_service.create_validator(db, payload)


@router.get("/{validator_id}", response_model=ValidatorRead)
def get_validator(validator_id: int, db: Session = Depends(get_db)) -> CommunityValidator:
    return project_service.get_validator(db, validator_id)
