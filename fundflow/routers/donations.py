"""Donation and offline batch endpoints."""
from typing import Any

from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.orm import Session

from fundflow.db import get_db
from fundflow.models import DonationTransaction
from fundflow.schemas import DonationCreate, DonationRead, OfflineSyncResult
from fundflow.services import donations as donation_service
from fundflow.services.offline_sync import sync_offline_transactions

router = APIRouter(tags=["donations"])


@router.post("/donations", response_model=DonationRead, status_code=status.HTTP_201_CREATED)
def create_donation(payload: DonationCreate, db: Session = Depends(get_db)) -> DonationTransaction:
    return donation_service.create_donation(db, payload)


@router.get("/donations/{donation_id}", response_model=DonationRead)
def get_donation(donation_id: int, db: Session = Depends(get_db)) -> DonationTransaction:
    return donation_service.get_donation(db, donation_id)


@router.post("/offline-transactions/sync", response_model=OfflineSyncResult)
def sync_offline(body: Any = Body(None), db: Session = Depends(get_db)) -> OfflineSyncResult:
    """Persist a batch queued while offline; items succeed or fail independently."""

    return sync_offline_transactions(db, body)
