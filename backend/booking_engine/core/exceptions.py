"""
Domain error taxonomy.

Services raise these instead of HTTP errors; the API layer maps them to
responses through the handlers registered in `register_exception_handlers`.
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class BookingEngineError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class NotFoundError(BookingEngineError):
    def __init__(self, message: str):
        super().__init__(message, status_code=404)


class InvalidStateError(BookingEngineError):
    """The operation is not valid for the entity's current lifecycle state."""

    def __init__(self, message: str):
        super().__init__(message, status_code=409)


class ConflictError(BookingEngineError):
    """Seat unavailable or duplicate identifier."""

    def __init__(self, message: str):
        super().__init__(message, status_code=409)


class ValidationError(BookingEngineError):
    def __init__(self, message: str):
        super().__init__(message, status_code=422)


class ExternalServiceError(BookingEngineError):
    """A collaborator (payment gateway) was unreachable or rejected the call."""

    def __init__(self, message: str):
        super().__init__(message, status_code=502)


async def booking_engine_error_handler(request: Request, exc: Exception) -> JSONResponse:
    error = exc if isinstance(exc, BookingEngineError) else BookingEngineError(str(exc))
    return JSONResponse(status_code=error.status_code, content={"detail": error.message})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BookingEngineError, booking_engine_error_handler)
