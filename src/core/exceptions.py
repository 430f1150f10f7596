"""Domain error taxonomy and HTTP handlers.

Every error raised by the booking core derives from ``BusinessLogicError`` so
callers can handle them uniformly; the HTTP adapter renders them through a
single handler. Errors are per-operation: nothing here is fatal to the process.
"""

from collections.abc import Iterable
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse


class BusinessLogicError(Exception):
    """Raised for domain-specific validation errors."""

    code = "business_error"

    def __init__(self, detail: str, status_code: int = status.HTTP_422_UNPROCESSABLE_ENTITY):
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)

    def payload(self) -> dict[str, Any]:
        return {}


class NotFoundError(BusinessLogicError):
    code = "not_found"

    def __init__(self, resource: str):
        self.resource = resource
        super().__init__(f"{resource} not found", status.HTTP_404_NOT_FOUND)


class TenantMismatch(NotFoundError):
    """Actor and tenant disagree. Rendered as not-found to avoid existence leaks."""

    code = "not_found"

    def __init__(self, resource: str = "Resource"):
        super().__init__(resource)


class AuthorizationDenied(BusinessLogicError):
    code = "forbidden"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason, status.HTTP_403_FORBIDDEN)


class ValidationError(BusinessLogicError):
    code = "validation_error"

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}", status.HTTP_422_UNPROCESSABLE_ENTITY)

    def payload(self) -> dict[str, Any]:
        return {"field": self.field}


class InvalidStateTransition(BusinessLogicError):
    code = "invalid_state_transition"

    def __init__(self, from_state: str, event: str, reason: str | None = None):
        self.from_state = from_state
        self.event = event
        self.reason = reason
        detail = f"Cannot {event} an appointment in state '{from_state}'"
        if reason:
            detail = f"{detail}: {reason}"
        super().__init__(detail, status.HTTP_409_CONFLICT)

    def payload(self) -> dict[str, Any]:
        return {"from_state": self.from_state, "event": self.event}


class SchedulingConflict(BusinessLogicError):
    code = "scheduling_conflict"

    def __init__(self, conflicting_ids: Iterable[str] = (), detail: str = "Professional is not available at this time"):
        self.conflicting_ids = list(conflicting_ids)
        super().__init__(detail, status.HTTP_409_CONFLICT)

    def payload(self) -> dict[str, Any]:
        return {"conflicting_ids": self.conflicting_ids}


class InsufficientCredits(BusinessLogicError):
    code = "insufficient_credits"

    def __init__(self, available: int, requested: int):
        self.available = available
        self.requested = requested
        super().__init__("Insufficient credits", status.HTTP_402_PAYMENT_REQUIRED)

    def payload(self) -> dict[str, Any]:
        return {"available": self.available, "requested": self.requested}


def register_exception_handlers(app: FastAPI) -> None:
    """Attach shared exception handlers to the FastAPI app."""

    @app.exception_handler(BusinessLogicError)
    async def _business_error_handler(_: Request, exc: BusinessLogicError):
        return JSONResponse(
            {"success": False, "message": exc.detail, "code": exc.code, **exc.payload()},
            status_code=exc.status_code,
        )
