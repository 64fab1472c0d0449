"""Error Handlers — every failure leaves the API in the PmiflowError envelope.

Invariants:
    - Request validation failures (400) and unhandled exceptions (500) are
      rewrapped as PmiflowError, so clients parse a single error shape
    - Field-level details ride along for InvalidEventError and request validation
    - 4xx errors log at warning, 5xx at error; only the catch-all logs a traceback
    - The 500 body never carries the exception text

Design Decisions:
    - Registered from main.py through one call, like the routers
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from pmiflow.core.errors import (
    ErrorCategory, ErrorSeverity, InvalidEventError, PmiflowError, field_error_details,
)

logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PmiflowError, _handle_pmiflow_error)
    app.add_exception_handler(RequestValidationError, _handle_request_validation)
    app.add_exception_handler(Exception, _handle_unexpected)


def _envelope(exc: PmiflowError, details: list[dict] | None = None) -> JSONResponse:
    body = exc.to_response()
    if details:
        body["error"]["details"] = details
    return JSONResponse(status_code=exc.http_status, content=body)


async def _handle_pmiflow_error(request: Request, exc: PmiflowError) -> JSONResponse:
    log = logger.warning if exc.http_status < 500 else logger.error
    log(
        f"{exc.code} on {request.url.path}: {exc.message}",
        extra={"error_code": exc.code, "case_id": exc.context.case_id},
    )
    details = exc.details if isinstance(exc, InvalidEventError) else None
    return _envelope(exc, details)


async def _handle_request_validation(
    request: Request, exc: RequestValidationError,
) -> JSONResponse:
    details = field_error_details(exc.errors())
    logger.warning(
        f"Rejected request to {request.url.path}: {len(details)} invalid field(s)",
        extra={"error_code": "VALIDATION_ERROR"},
    )
    error = PmiflowError(
        "Invalid request data", "VALIDATION_ERROR", ErrorCategory.VALIDATION,
        ErrorSeverity.ERROR, http_status=status.HTTP_400_BAD_REQUEST,
    )
    return _envelope(error, details)


async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled {exc.__class__.__name__} on {request.url.path}",
        extra={"error_code": "INTERNAL_ERROR"},
        exc_info=exc,
    )
    error = PmiflowError(
        "An unexpected error occurred", "INTERNAL_ERROR", ErrorCategory.INTERNAL,
        ErrorSeverity.CRITICAL, http_status=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    return _envelope(error)
