"""
Access logging with request IDs.

Every request gets an ID (taken from ``X-Request-ID`` when the caller sends
one) that is stored in a context variable, so log records written while the
request is handled carry it, and echoed back in the response headers.
"""

import contextvars
import logging
import re
import time
from typing import Any, Dict
from uuid import uuid4

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar('request_id', default='no-request-id')

QUIET_PATHS = {"/", "/health", "/docs", "/redoc", "/openapi.json"}
SLOW_REQUEST_SECONDS = 2.0

# /api/v1/events/<uuid>[:action | /sub-resource]
_EVENT_PATH = re.compile(r"/events/(?P<event_id>[0-9a-fA-F-]{36})(?:[:/](?P<action>[\w-]+))?")


def describe_path(path: str) -> Dict[str, Any]:
    """Event id and action encoded in an API path, for log context."""
    match = _EVENT_PATH.search(path)
    if not match:
        return {}
    context = {"event_id": match.group("event_id")}
    if match.group("action"):
        context["event_action"] = match.group("action")
    return context


def client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs one line per request and one per response under a request ID."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)

        path = request.url.path
        context = {
            "request_id": request_id,
            "method": request.method,
            "path": path,
            "client_ip": client_ip(request),
            **describe_path(path),
        }
        level = logging.DEBUG if path in QUIET_PATHS else logging.INFO
        logger.log(level, f"{request.method} {path}", extra=context)

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                f"{request.method} {path} failed after {time.perf_counter() - started:.4f}s",
                extra=context
            )
            raise
        finally:
            request_id_var.reset(token)

        elapsed = time.perf_counter() - started
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        self._log_response(response, context, elapsed, level)
        return response

    @staticmethod
    def _log_response(response: Response, context: Dict[str, Any], elapsed: float, level: int) -> None:
        status = response.status_code
        extra = {**context, "status_code": status, "process_time": elapsed}
        message = f"{context['method']} {context['path']} -> {status} ({elapsed:.4f}s)"

        if status >= 500:
            logger.error(message, extra=extra)
        elif status == 409 and "retry-after" in response.headers:
            # Conflict retries exhausted; frequent ones point at a hot event
            logger.warning(message, extra={**extra, "retry_after": response.headers["retry-after"]})
        elif status >= 400:
            logger.warning(message, extra=extra)
        else:
            logger.log(level, message, extra=extra)

        if elapsed > SLOW_REQUEST_SECONDS:
            logger.warning(
                f"Slow request: {context['method']} {context['path']} took {elapsed:.4f}s",
                extra={**extra, "threshold": SLOW_REQUEST_SECONDS}
            )
