"""Schemas for aggregate impact metrics."""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel


class ImpactMetricsRead(BaseModel):
    water_access_improved: int = 0
    schools_built: int = 0
    health_clinics_supported: int = 0
    jobs_created: int = 0
    communities_reached: int = 0
    local_currency_impact: dict[str, Decimal] = {}
    projects_by_category: dict[str, int] = {}


class CurrencyConversionRead(BaseModel):
    source: str
    target: str
    amount: Decimal
    converted_amount: Decimal
    rate: Decimal
    timestamp: datetime
