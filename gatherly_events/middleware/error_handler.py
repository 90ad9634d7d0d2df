"""
Error handling middleware translating service errors into HTTP responses.
"""

import logging
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from sqlalchemy.exc import IntegrityError, OperationalError, TimeoutError as SQLTimeoutError
from pydantic import ValidationError as PydanticValidationError

from ..utils.exceptions import (
    GatherlyError,
    ErrorCode,
    ValidationError,
    NotFoundError,
    BusinessLogicError,
    ConcurrencyConflict,
    ExternalServiceError,
)

logger = logging.getLogger(__name__)


STATUS_BY_ERROR_CODE: Dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: status.HTTP_422_UNPROCESSABLE_CONTENT,
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorCode.INVALID_TRANSITION: status.HTTP_409_CONFLICT,
    ErrorCode.EVENT_NOT_OPEN: status.HTTP_422_UNPROCESSABLE_CONTENT,
    ErrorCode.ALREADY_REGISTERED: status.HTTP_409_CONFLICT,
    ErrorCode.NOT_REGISTERED: status.HTTP_404_NOT_FOUND,
    ErrorCode.CAPACITY_BELOW_OCCUPANCY: status.HTTP_409_CONFLICT,
    ErrorCode.CONCURRENCY_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.EXTERNAL_SERVICE_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def get_status_code_for_error(exc: GatherlyError) -> int:
    """Map error codes to HTTP status codes."""
    return STATUS_BY_ERROR_CODE.get(exc.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def gatherly_error_response(exc: GatherlyError, error_id: Optional[str] = None) -> JSONResponse:
    """Build the structured error response for a service error."""
    headers = {}
    if exc.retry_after:
        headers["Retry-After"] = str(exc.retry_after)

    return JSONResponse(
        status_code=get_status_code_for_error(exc),
        content={
            "error": exc.to_dict(),
            "error_id": error_id or str(uuid4()),
            "timestamp": _timestamp()
        },
        headers=headers
    )


async def gatherly_exception_handler(request: Request, exc: GatherlyError) -> JSONResponse:
    """FastAPI exception handler for service errors raised by route handlers."""
    error_id = str(uuid4())
    log_error(request, exc, error_id)
    return gatherly_error_response(exc, error_id)


async def request_validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """Report malformed request bodies and parameters in the service error format."""
    field_errors: Dict[str, list] = {}
    for error in exc.errors():
        field_path = ".".join(str(loc) for loc in error["loc"])
        field_errors.setdefault(field_path, []).append(error["msg"])

    return gatherly_error_response(
        ValidationError("Request validation failed", field_errors=field_errors)
    )


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch-all for errors that escape the route-level exception handlers."""

    def __init__(self, app, debug: bool = False):
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next):
        """Process request and handle any exceptions."""
        error_id = str(uuid4())

        try:
            return await call_next(request)
        except Exception as exc:
            log_error(request, exc, error_id)
            return self._handle_exception(exc, error_id)

    def _handle_exception(self, exc: Exception, error_id: str) -> JSONResponse:
        if isinstance(exc, GatherlyError):
            return gatherly_error_response(exc, error_id)
        if isinstance(exc, PydanticValidationError):
            return self._handle_validation_error(exc, error_id)
        if isinstance(exc, IntegrityError):
            return self._handle_integrity_error(exc, error_id)
        if isinstance(exc, (OperationalError, SQLTimeoutError)):
            return self._handle_database_error(exc, error_id)
        return self._handle_unexpected_error(exc, error_id)

    def _handle_validation_error(self, exc: PydanticValidationError, error_id: str) -> JSONResponse:
        field_errors: Dict[str, list] = {}
        for error in exc.errors():
            field_path = ".".join(str(loc) for loc in error["loc"])
            field_errors.setdefault(field_path, []).append(error["msg"])

        return gatherly_error_response(
            ValidationError("Request validation failed", field_errors=field_errors),
            error_id
        )

    def _handle_integrity_error(self, exc: IntegrityError, error_id: str) -> JSONResponse:
        error_message = str(exc.orig).lower() if exc.orig is not None else str(exc).lower()

        if "unique" in error_message:
            constraint_type = "unique"
        elif "foreign key" in error_message:
            constraint_type = "foreign_key"
        elif "not null" in error_message:
            constraint_type = "not_null"
        elif "check" in error_message:
            constraint_type = "check"
        else:
            constraint_type = "unknown"

        error = ValidationError(
            "Data integrity constraint violation",
            details={"constraint_type": constraint_type}
        )
        response = gatherly_error_response(error, error_id)
        response.status_code = status.HTTP_409_CONFLICT
        return response

    def _handle_database_error(self, exc: Exception, error_id: str) -> JSONResponse:
        error = ExternalServiceError(
            "database",
            "Database service temporarily unavailable",
            details={"error_type": type(exc).__name__},
            retry_after=30
        )
        return gatherly_error_response(error, error_id)

    def _handle_unexpected_error(self, exc: Exception, error_id: str) -> JSONResponse:
        error = GatherlyError(
            "An unexpected error occurred",
            error_code=ErrorCode.INTERNAL_ERROR,
            details={"error_type": type(exc).__name__} if self.debug else None
        )

        content: Dict[str, Any] = {
            "error": error.to_dict(),
            "error_id": error_id,
            "timestamp": _timestamp()
        }
        if self.debug:
            content["debug"] = {
                "exception": str(exc),
                "traceback": traceback.format_exc()
            }

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=content
        )


def log_error(request: Request, exc: Exception, error_id: str) -> None:
    """Log error with request context; client errors at warning level."""
    extra = {
        "error_id": error_id,
        "method": request.method,
        "path": request.url.path,
        "client_ip": request.client.host if request.client else None,
    }

    if isinstance(exc, GatherlyError):
        extra["error_code"] = exc.error_code.value
        extra["details"] = exc.details
        if isinstance(exc, (ValidationError, NotFoundError, BusinessLogicError)):
            logger.warning(f"Client error [{error_id}]: {exc.message}", extra=extra)
        elif isinstance(exc, ConcurrencyConflict):
            logger.warning(f"Concurrency conflict [{error_id}]: {exc.message}", extra=extra)
        elif isinstance(exc, ExternalServiceError):
            logger.error(f"System error [{error_id}]: {exc.message}", extra=extra)
        else:
            logger.warning(f"Request rejected [{error_id}]: {exc.message}", extra=extra)
    else:
        logger.error(
            f"Unexpected error [{error_id}]: {exc}",
            extra={**extra, "error_type": type(exc).__name__},
            exc_info=exc
        )
