"""Health check endpoint."""
from __future__ import annotations

import hashlib
import logging

from fastapi import APIRouter
from sqlalchemy import text

from fundflow.config import AppInfo, Settings, get_settings
from fundflow.db import get_engine

router = APIRouter(prefix="/health", tags=["health"])
logger = logging.getLogger(__name__)


def _secret_status(primary: str | None, secondary: str | None) -> str:
    if primary and secondary:
        return "ok"
    if primary or secondary:
        return "partial"
    return "missing"


def _db_status() -> str:
    """Return 'ok' if the DB is reachable, 'error' otherwise."""

    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return "ok"
    except Exception:  # noqa: BLE001
        logger.exception("DB health check failed")
        return "error"


def _secret_fingerprints(settings: Settings) -> dict[str, str | None]:
    def _fp(value: str | None) -> str | None:
        if not value:
            return None
        return hashlib.sha256(value.encode("utf-8")).hexdigest()[:8]

    return {
        "primary": _fp(settings.mobile_money_webhook_secret),
        "next": _fp(settings.mobile_money_webhook_secret_next),
    }


@router.get("", summary="Health check")
def healthcheck() -> dict[str, object]:
    settings = get_settings()
    db_status = _db_status()
    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "version": AppInfo().version,
        "db_status": db_status,
        "mobile_money_webhook_secret_status": _secret_status(
            settings.mobile_money_webhook_secret, settings.mobile_money_webhook_secret_next
        ),
        "mobile_money_webhook_secret_fingerprints": _secret_fingerprints(settings),
        "stripe": {
            "enabled": bool(settings.STRIPE_ENABLED),
            "webhook_configured": bool(settings.STRIPE_WEBHOOK_SECRET),
        },
        "fund_release_configured": bool(settings.FUND_RELEASE_URL),
    }
