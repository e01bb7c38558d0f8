"""
Domain errors and their HTTP mapping.

Services raise these; the API layer renders them through a single exception
handler as ``{"error": <message>, ...context}`` with the class status code.
"""

from typing import Any


class AppError(Exception):
    """Base class for errors that carry a user-facing message."""

    status_code = 500

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.message, **self.context}


class ValidationError(AppError):
    status_code = 400


class NotFoundError(AppError):
    status_code = 404


class InvalidStateError(AppError):
    status_code = 400


class AlreadyAcknowledgedError(InvalidStateError):
    """Raised on a second acknowledgment; carries the original acknowledger."""

    def __init__(self, acknowledged_by: str | None, acknowledged_at: Any):
        super().__init__(
            "Alert already acknowledged",
            acknowledged_by=acknowledged_by,
            acknowledged_at=acknowledged_at,
        )
        self.acknowledged_by = acknowledged_by
        self.acknowledged_at = acknowledged_at


class ForbiddenError(AppError):
    status_code = 403


class UpstreamUnavailableError(AppError):
    status_code = 500


class SchedulerRunError(AppError):
    status_code = 500

    def __init__(self, details: str):
        super().__init__("Scheduler failed", success=False, details=details)
