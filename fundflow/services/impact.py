"""Aggregate impact metrics maintained from confirmed payments."""
from __future__ import annotations

import logging
from decimal import ROUND_FLOOR, Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from fundflow.config import get_settings
from fundflow.models import DEFAULT_METRICS_KEY, ImpactEvent, ImpactMetrics, ProjectCategory
from fundflow.schemas import ImpactMetricsRead
from fundflow.utils.errors import PersistenceFailure

logger = logging.getLogger(__name__)

COUNTER_BY_CATEGORY = {
    ProjectCategory.WATER: "water_access_improved",
    ProjectCategory.EDUCATION: "schools_built",
    ProjectCategory.HEALTH: "health_clinics_supported",
    ProjectCategory.AGRICULTURE: "jobs_created",
    ProjectCategory.INFRASTRUCTURE: "communities_reached",
}


def _floor(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def compute_increments(category: ProjectCategory | str, amount: Decimal) -> dict[str, int]:
    """Return the counter increments earned by ``amount`` donated to ``category``.

    water: one person per half unit; education: a school above 1000;
    health: a clinic above 5000; agriculture: a job per 100;
    infrastructure: a community per 500.
    """

    category = ProjectCategory(category)
    amount = Decimal(amount)
    if category is ProjectCategory.WATER:
        increment = _floor(amount * 2)
    elif category is ProjectCategory.EDUCATION:
        increment = 1 if amount > 1000 else 0
    elif category is ProjectCategory.HEALTH:
        increment = 1 if amount > 5000 else 0
    elif category is ProjectCategory.AGRICULTURE:
        increment = _floor(amount / 100)
    else:
        increment = _floor(amount / 500)
    return {COUNTER_BY_CATEGORY[category]: increment}


def _event_exists(db: Session, source_key: str) -> bool:
    stmt = select(ImpactEvent.id).where(ImpactEvent.source_key == source_key)
    return db.scalars(stmt).first() is not None


def _load_metrics(db: Session) -> ImpactMetrics | None:
    stmt = (
        select(ImpactMetrics)
        .where(ImpactMetrics.key == DEFAULT_METRICS_KEY)
        .execution_options(populate_existing=True)
    )
    return db.scalars(stmt).first()


def _apply_to_row(
    metrics: ImpactMetrics,
    *,
    increments: dict[str, int],
    category: str,
    amount: Decimal,
    currency: str,
) -> None:
    for counter, increment in increments.items():
        setattr(metrics, counter, (getattr(metrics, counter) or 0) + increment)

    # JSON columns are not mutation-tracked; assign fresh dicts.
    local_impact = dict(metrics.local_currency_impact or {})
    local_impact[currency] = str(Decimal(local_impact.get(currency, "0")) + amount)
    metrics.local_currency_impact = local_impact

    by_category = dict(metrics.projects_by_category or {})
    by_category[category] = int(by_category.get(category, 0)) + 1
    metrics.projects_by_category = by_category


def apply_impact(
    db: Session,
    *,
    source_key: str,
    amount: Decimal,
    currency: str,
    category: ProjectCategory | str,
) -> bool:
    """Apply the impact of one confirmed contribution exactly once.

    Returns ``False`` when ``source_key`` was already applied. The ledger insert
    and the metrics update commit together; a concurrent metrics update is
    detected through the version column and the whole unit is retried.
    """

    settings = get_settings()
    category_value = ProjectCategory(category).value
    currency = currency.upper()
    amount = Decimal(amount)
    increments = compute_increments(category_value, amount)

    for attempt in range(1, settings.IMPACT_METRICS_MAX_RETRIES + 1):
        if _event_exists(db, source_key):
            logger.info("Impact already applied", extra={"source_key": source_key})
            return False

        try:
            metrics = _load_metrics(db)
            if metrics is None:
                metrics = ImpactMetrics(key=DEFAULT_METRICS_KEY)
                db.add(metrics)
                db.flush()

            db.add(
                ImpactEvent(
                    source_key=source_key,
                    category=category_value,
                    amount=amount,
                    currency=currency,
                    increments=increments,
                )
            )
            _apply_to_row(
                metrics,
                increments=increments,
                category=category_value,
                amount=amount,
                currency=currency,
            )
            db.commit()
        except StaleDataError:
            db.rollback()
            logger.info(
                "Impact metrics version conflict; retrying",
                extra={"source_key": source_key, "attempt": attempt},
            )
            continue
        except IntegrityError:
            db.rollback()
            if _event_exists(db, source_key):
                logger.info("Impact already applied concurrently", extra={"source_key": source_key})
                return False
            logger.info(
                "Impact metrics row created concurrently; retrying",
                extra={"source_key": source_key, "attempt": attempt},
            )
            continue

        logger.info(
            "Impact metrics updated",
            extra={
                "source_key": source_key,
                "category": category_value,
                "increments": increments,
                "currency": currency,
            },
        )
        return True

    logger.error("Impact metrics update exhausted retries", extra={"source_key": source_key})
    raise PersistenceFailure(
        "Impact metrics could not be updated.",
        code="IMPACT_UPDATE_CONFLICT",
        details={"source_key": source_key},
    )


def get_metrics(db: Session) -> ImpactMetricsRead:
    """Return the current aggregate, zeroed when nothing has been applied yet."""

    metrics = _load_metrics(db)
    if metrics is None:
        return ImpactMetricsRead()
    return ImpactMetricsRead(
        water_access_improved=metrics.water_access_improved,
        schools_built=metrics.schools_built,
        health_clinics_supported=metrics.health_clinics_supported,
        jobs_created=metrics.jobs_created,
        communities_reached=metrics.communities_reached,
        local_currency_impact={
            currency: Decimal(value) for currency, value in (metrics.local_currency_impact or {}).items()
        },
        projects_by_category=dict(metrics.projects_by_category or {}),
    )


__all__ = ["COUNTER_BY_CATEGORY", "apply_impact", "compute_increments", "get_metrics"]
