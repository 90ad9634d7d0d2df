"""Middleware components for the Gatherly events service."""

from .error_handler import (
    ErrorHandlerMiddleware,
    gatherly_exception_handler,
    request_validation_exception_handler,
)
from .logging import LoggingMiddleware

__all__ = [
    "ErrorHandlerMiddleware",
    "LoggingMiddleware",
    "gatherly_exception_handler",
    "request_validation_exception_handler",
]
