from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status


class AutomationError(HTTPException):
    """Base error for the insight/action engine, rendered as an HTTP error."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "automation_error"

    def __init__(self, message: str, *, details: Any = None) -> None:
        super().__init__(status_code=self.status_code, detail=message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        return self.message


class ValidationError(AutomationError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "validation_error"


class UnsupportedActionError(AutomationError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "unsupported_action"


class ConflictError(AutomationError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"


class NotFoundError(AutomationError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class ForbiddenActionError(AutomationError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"


class FeatureDisabledError(AutomationError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    code = "upgrade_required"


class TransientError(AutomationError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "transient_error"

    def __init__(self, message: str = "Temporary failure, please retry", *, details: Any = None) -> None:
        super().__init__(message, details=details)


class ExecutionError(AutomationError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "execution_failed"
