"""Impact metrics and currency conversion endpoints."""
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from fundflow.db import get_db
from fundflow.schemas import CurrencyConversionRead, ImpactMetricsRead
from fundflow.services import currency as currency_service
from fundflow.services import impact as impact_service

router = APIRouter(tags=["impact"])


@router.get("/impact-metrics", response_model=ImpactMetricsRead)
def read_impact_metrics(db: Session = Depends(get_db)) -> ImpactMetricsRead:
    return impact_service.get_metrics(db)


@router.get("/currency/convert", response_model=CurrencyConversionRead)
def convert_currency(
    source: str = Query(..., alias="from", min_length=3, max_length=3),
    target: str = Query(..., alias="to", min_length=3, max_length=3),
    amount: Decimal = Query(..., gt=0),
) -> CurrencyConversionRead:
    conversion = currency_service.convert(source, target, amount)
    return CurrencyConversionRead(
        source=conversion.source,
        target=conversion.target,
        amount=conversion.amount,
        converted_amount=conversion.converted_amount,
        rate=conversion.rate,
        timestamp=conversion.timestamp,
    )
