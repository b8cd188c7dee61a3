"""Fire-and-forget stakeholder notifications.

Every public helper here swallows delivery failures after logging them: a
notification never fails the operation that triggered it.
"""
from __future__ import annotations

import logging
from typing import Protocol, Sequence

import httpx
from sqlalchemy.orm import Session

from fundflow import db as db_module
from fundflow.config import get_settings
from fundflow.models import Project

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, stakeholders: Sequence[str], message: str) -> None:
        ...


class LogNotifier:
    """Default notifier: records the message in the application log."""

    def notify(self, stakeholders: Sequence[str], message: str) -> None:
        logger.info("Stakeholder notification", extra={"stakeholders": list(stakeholders), "message": message})


class SmsNotifier:
    """Sends SMS through the configured provider API (one request per recipient)."""

    def __init__(self, api_url: str, auth_token: str, timeout: float) -> None:
        self._api_url = api_url
        self._auth_token = auth_token
        self._timeout = timeout

    def notify(self, stakeholders: Sequence[str], message: str) -> None:
        for recipient in stakeholders:
            response = httpx.post(
                self._api_url,
                json={"to": recipient, "message": message},
                headers={"Authorization": f"Bearer {self._auth_token}"},
                timeout=self._timeout,
            )
            response.raise_for_status()


def get_notifier() -> Notifier:
    return LogNotifier()


def get_sms_notifier() -> Notifier | None:
    settings = get_settings()
    if not (settings.SMS_PROVIDER_API and settings.SMS_PROVIDER_AUTH_TOKEN):
        return None
    return SmsNotifier(
        settings.SMS_PROVIDER_API,
        settings.SMS_PROVIDER_AUTH_TOKEN,
        settings.NOTIFY_TIMEOUT_SECONDS,
    )


def safe_notify(stakeholders: Sequence[str], message: str, *, notifier: Notifier | None = None) -> None:
    """Deliver ``message`` and log, never raise, on failure."""

    try:
        (notifier or get_notifier()).notify(stakeholders, message)
    except Exception:  # noqa: BLE001
        logger.exception("Notification delivery failed", extra={"stakeholders": len(stakeholders)})


def send_sms(phone_number: str, message: str) -> None:
    """Send a donor SMS when a provider is configured; failures are logged only."""

    notifier = get_sms_notifier()
    if notifier is None:
        logger.info("SMS provider not configured; skipping SMS notification")
        return
    safe_notify([phone_number], message, notifier=notifier)


def _notify_project(session: Session, project_id: int, message: str) -> None:
    project = session.get(Project, project_id)
    if project is None:
        logger.warning("Notification for unknown project", extra={"project_id": project_id})
        return
    safe_notify([project.ngo_address], f"{project.title}: {message}")


def notify_project_stakeholders(project_id: int, message: str, *, db: Session | None = None) -> None:
    """Notify the NGO owning ``project_id``.

    Runs detached from the request when scheduled as a background task, so it
    opens its own session unless one is handed in.
    """

    try:
        if db is not None:
            _notify_project(db, project_id, message)
            return
        with db_module.session_scope() as session:
            _notify_project(session, project_id, message)
    except Exception:  # noqa: BLE001
        logger.exception("Stakeholder notification failed", extra={"project_id": project_id})


__all__ = [
    "LogNotifier",
    "Notifier",
    "SmsNotifier",
    "get_notifier",
    "get_sms_notifier",
    "notify_project_stakeholders",
    "safe_notify",
    "send_sms",
]
