"""Fund release collaborator used by milestone settlement."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, Sequence
from uuid import uuid4

import httpx

from fundflow.config import Settings, get_settings

logger = logging.getLogger(__name__)


class FundReleaseError(RuntimeError):
    """Raised when the external fund release could not be confirmed."""


@dataclass(frozen=True)
class ReleaseReceipt:
    reference: str


class FundReleaser(Protocol):
    def release(self, project_id: int, milestone_id: int, validation_ids: Sequence[int]) -> ReleaseReceipt:
        ...


class LedgerFundReleaser:
    """Stub releaser issuing a local reference (no external transfer configured)."""

    def release(self, project_id: int, milestone_id: int, validation_ids: Sequence[int]) -> ReleaseReceipt:
        reference = f"REL-{uuid4()}"
        logger.info(
            "Fund release recorded locally",
            extra={
                "project_id": project_id,
                "milestone_id": milestone_id,
                "validations": len(validation_ids),
                "reference": reference,
            },
        )
        return ReleaseReceipt(reference=reference)


class HttpFundReleaser:
    """Releases milestone funds through an external HTTP endpoint with a bounded timeout."""

    def __init__(self, settings: Settings) -> None:
        if not settings.FUND_RELEASE_URL:
            raise RuntimeError("Fund release URL is missing; configure FUND_RELEASE_URL.")
        self._url = settings.FUND_RELEASE_URL
        self._api_key = settings.FUND_RELEASE_API_KEY
        self._timeout = settings.FUND_RELEASE_TIMEOUT_SECONDS

    def release(self, project_id: int, milestone_id: int, validation_ids: Sequence[int]) -> ReleaseReceipt:
        headers = {"Idempotency-Key": f"release|project:{project_id}|ms:{milestone_id}"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        try:
            response = httpx.post(
                self._url,
                json={
                    "project_id": project_id,
                    "milestone_id": milestone_id,
                    "validation_ids": list(validation_ids),
                },
                headers=headers,
                timeout=self._timeout,
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise FundReleaseError(f"Fund release request failed: {exc}") from exc

        reference = body.get("reference") or body.get("transaction_hash") or body.get("tx_hash")
        if not reference:
            raise FundReleaseError("Fund release response did not include a reference.")
        return ReleaseReceipt(reference=str(reference))


def get_fund_releaser() -> FundReleaser:
    """Return the releaser configured for this deployment."""

    settings = get_settings()
    if settings.FUND_RELEASE_URL:
        return HttpFundReleaser(settings)
    return LedgerFundReleaser()


__all__ = [
    "FundReleaseError",
    "FundReleaser",
    "HttpFundReleaser",
    "LedgerFundReleaser",
    "ReleaseReceipt",
    "get_fund_releaser",
]
