"""Domain error taxonomy and the standardized error payload."""
from typing import Any


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return a standardized error payload."""

    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return payload


class SettlementError(Exception):
    """Base class for errors surfaced to callers verbatim."""

    status_code: int = 400
    default_code: str = "SETTLEMENT_ERROR"

    def __init__(self, message: str, *, code: str | None = None, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_payload(self) -> dict[str, Any]:
        return error_response(self.code, self.message, self.details)


class ValidationFailed(SettlementError):
    status_code = 400
    default_code = "VALIDATION_FAILED"


class Forbidden(SettlementError):
    """The actor lacks the capability required for the operation."""

    status_code = 403
    default_code = "FORBIDDEN"


class NotFound(SettlementError):
    status_code = 404
    default_code = "NOT_FOUND"


class InvalidTransition(SettlementError):
    """A state machine precondition did not hold when the write happened."""

    status_code = 409
    default_code = "INVALID_TRANSITION"


class DuplicateActiveRequest(SettlementError):
    status_code = 409
    default_code = "DUPLICATE_ACTIVE_REQUEST"


class InconsistentRecord(SettlementError):
    """Stored or delivered data violates a monetary invariant; never coerced."""

    status_code = 422
    default_code = "INCONSISTENT_RECORD"


class UpstreamUnavailable(SettlementError):
    """The store, processor or transfer service failed; safe to retry."""

    status_code = 503
    default_code = "UPSTREAM_UNAVAILABLE"


__all__ = [
    "DuplicateActiveRequest",
    "Forbidden",
    "InconsistentRecord",
    "InvalidTransition",
    "NotFound",
    "SettlementError",
    "UpstreamUnavailable",
    "ValidationFailed",
    "error_response",
]
