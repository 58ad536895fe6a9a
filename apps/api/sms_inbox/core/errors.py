from __future__ import annotations

from fastapi import HTTPException, status


class SmsInboxError(HTTPException):
    """Domain error rendered as ``{"error": detail}`` by the app-level handler."""

    status_code_default = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str) -> None:
        super().__init__(status_code=self.status_code_default, detail=detail)


class ValidationError(SmsInboxError):
    status_code_default = status.HTTP_400_BAD_REQUEST


class NotFound(SmsInboxError):
    status_code_default = status.HTTP_404_NOT_FOUND


class NoRouteFound(SmsInboxError):
    status_code_default = status.HTTP_404_NOT_FOUND


class AlreadyAcknowledgedOrNotFound(SmsInboxError):
    # One error for both cases so message ids never leak across tenants.
    status_code_default = status.HTTP_400_BAD_REQUEST


class InvalidState(SmsInboxError):
    status_code_default = status.HTTP_409_CONFLICT


class GatewaySendError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
