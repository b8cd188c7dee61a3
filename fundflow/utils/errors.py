"""Standardized error payloads and the domain error taxonomy."""
from typing import Any

from fastapi import HTTPException, status


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return a standardized error payload."""

    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return payload


class DomainError(HTTPException):
    """Base class for errors scoped to a single request.

    Subclasses carry the HTTP status and a default error code so services can
    raise them directly and routers render them through the shared handler.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_SERVER_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.code = code or self.code
        self.message = message
        self.details = details
        super().__init__(
            status_code=type(self).status_code,
            detail=error_response(self.code, message, details),
        )

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class InvalidInput(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "INVALID_INPUT"


class OutOfBounds(DomainError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "GPS_OUT_OF_BOUNDS"


class NotFound(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class Conflict(DomainError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"


class UpstreamFailure(DomainError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "UPSTREAM_FAILURE"


class PersistenceFailure(DomainError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "PERSISTENCE_FAILURE"


__all__ = [
    "error_response",
    "DomainError",
    "InvalidInput",
    "OutOfBounds",
    "NotFound",
    "Conflict",
    "UpstreamFailure",
    "PersistenceFailure",
]
