"""Milestone validation intake endpoints."""
from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.orm import Session

from fundflow.db import get_db
from fundflow.models import Validation
from fundflow.schemas import ValidationCreate, ValidationRead, ValidationSubmitResult
from fundflow.services import validations as validation_service

router = APIRouter(prefix="/validations", tags=["validations"])


@router.post("", response_model=ValidationSubmitResult, status_code=status.HTTP_201_CREATED)
def submit_validation(
    payload: ValidationCreate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
) -> ValidationSubmitResult:
    return validation_service.submit_validation(db, payload, background=background)


@router.get("/{validation_id}", response_model=ValidationRead)
def get_validation(validation_id: int, db: Session = Depends(get_db)) -> Validation:
    return validation_service.get_validation(db, validation_id)
