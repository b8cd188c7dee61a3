"""Aggregate impact metrics and the ledger of applied increments."""
from decimal import Decimal

from sqlalchemy import Integer, JSON, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base

DEFAULT_METRICS_KEY = "default"


class ImpactMetrics(Base):
    """Singleton aggregate of platform-wide impact counters.

    Updates are guarded by ``version`` (SQLAlchemy optimistic concurrency): a
    flush against a row modified concurrently raises ``StaleDataError``.
    """

    __tablename__ = "african_impact_metrics"

    key: Mapped[str] = mapped_column(String(32), nullable=False, unique=True, default=DEFAULT_METRICS_KEY)
    water_access_improved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    schools_built: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    health_clinics_supported: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    jobs_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    communities_reached: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    local_currency_impact: Mapped[dict[str, str]] = mapped_column(JSON, nullable=False, default=dict)
    projects_by_category: Mapped[dict[str, int]] = mapped_column(JSON, nullable=False, default=dict)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class ImpactEvent(Base):
    """One applied impact increment; ``source_key`` makes the aggregator idempotent."""

    __tablename__ = "impact_events"

    source_key: Mapped[str] = mapped_column(String(191), nullable=False, unique=True)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    increments: Mapped[dict[str, int]] = mapped_column(JSON, nullable=False, default=dict)
