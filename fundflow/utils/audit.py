"""Audit trail writer.

Payloads are masked before they reach ``audit_logs``: donors' emails, phone
numbers and addresses, and validators' wallets, are reduced to a short tail.
"""
from __future__ import annotations

from typing import Any, Callable, Mapping

from sqlalchemy.orm import Session

from fundflow.models.audit import AuditLog
from fundflow.utils.time import utcnow


def _mask_email(value: Any) -> str:
    text = str(value)
    if "@" not in text:
        return "***"
    return "***@" + text.split("@", 1)[1]


def _mask_phone(value: Any) -> str:
    digits = "".join(ch for ch in str(value) if ch.isdigit())
    return f"***{digits[-3:]}" if len(digits) > 3 else "***"


def _mask_tail(value: Any) -> str:
    compact = str(value).replace(" ", "")
    return f"***{compact[-4:]}"


_MASKERS: dict[str, Callable[[Any], str]] = {
    "email": _mask_email,
    "customer_email": _mask_email,
    "donor_email": _mask_email,
    "phone_number": _mask_phone,
    "donor_address": _mask_tail,
    "wallet_address": _mask_tail,
    "card_number": _mask_tail,
}
SENSITIVE_KEYS = frozenset(_MASKERS)


def sanitize_payload_for_audit(data: Any) -> Any:
    """Return a copy of ``data`` with sensitive keys masked at any depth. ``None`` stays ``None``."""

    if isinstance(data, Mapping):
        sanitized: dict[str, Any] = {}
        for key, value in data.items():
            masker = _MASKERS.get(key)
            sanitized[key] = masker(value) if masker and value is not None else sanitize_payload_for_audit(value)
        return sanitized
    if isinstance(data, list):
        return [sanitize_payload_for_audit(item) for item in data]
    return data


def log_audit(
    db: Session,
    *,
    actor: str,
    action: str,
    entity: str,
    entity_id: int | None,
    data: Mapping[str, Any] | None = None,
) -> None:
    """Stage an audit row in ``db``; it is committed with the caller's unit of work."""

    db.add(
        AuditLog(
            actor=actor,
            action=action,
            entity=entity,
            entity_id=entity_id or 0,
            data_json=sanitize_payload_for_audit(dict(data or {})),
            at=utcnow(),
        )
    )


__all__ = ["SENSITIVE_KEYS", "log_audit", "sanitize_payload_for_audit"]
