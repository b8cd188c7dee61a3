"""Append-only audit trail of state changes."""
from datetime import datetime

from sqlalchemy import DateTime, Index, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from fundflow.utils.time import utcnow

from .base import Base


class AuditLog(Base):
    """One recorded action on a FundFlow entity.

    ``actor`` names whoever acted, e.g. ``"validator:7"`` or a payment provider.
    ``data_json`` is stored already masked by :func:`fundflow.utils.audit.log_audit`.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_entity", "entity", "entity_id"),
        Index("ix_audit_logs_action", "action"),
    )

    actor: Mapped[str] = mapped_column(String(100), nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_id: Mapped[int] = mapped_column(nullable=False)
    data_json: Mapped[dict] = mapped_column(JSON, nullable=False)
    at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<AuditLog {self.action} {self.entity}#{self.entity_id} by {self.actor}>"
