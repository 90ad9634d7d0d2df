"""FastAPI application setup and configuration."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from gatherly_events.config import settings
from gatherly_events.api import api_router
from gatherly_events.database import init_database, close_database
from gatherly_events.middleware import (
    ErrorHandlerMiddleware,
    LoggingMiddleware,
    gatherly_exception_handler,
    request_validation_exception_handler,
)
from gatherly_events.schemas.common import HealthStatus
from gatherly_events.utils.exceptions import GatherlyError
from gatherly_events.utils.logging_config import setup_logging

APP_VERSION = "1.0.0"

# Set up logging
setup_logging(
    log_level="DEBUG" if settings.debug else settings.log_level,
    log_file="logs/gatherly.log" if settings.environment == "production" else None,
    enable_json_logging=settings.enable_json_logging or settings.environment == "production"
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    logger.info("Starting Gatherly events service")
    await init_database()
    yield
    logger.info("Shutting down Gatherly events service")
    await close_database()


app = FastAPI(
    title="Gatherly Events API",
    description="""
    ## Gatherly Events

    Event lifecycle and attendee admission service for the event dashboard.

    ### Lifecycle

    Events move `draft -> upcoming -> ongoing -> completed`, and any
    non-terminal event can be `cancelled`. Only organizers of an event and
    admins may change it. `GET /events/{id}/transitions` lists the moves
    available from the current status.

    ### Admission

    Registration is open while an event is `upcoming`. Registrations beyond
    capacity join a waitlist; a freed seat or a capacity increase promotes
    waitlisted attendees in the order they joined.

    ### Authentication

    Send the access token issued by the auth service:
    `Authorization: Bearer <token>`.

    ### Concurrency

    Writes to one event are serialized by an optimistic version check.
    Conflicts are retried by the server; a `409 CONCURRENCY_CONFLICT` with a
    `Retry-After` header is returned only when retries are exhausted.
    """,
    version=APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {
            "name": "events",
            "description": "Event management, lifecycle and organizer operations"
        },
        {
            "name": "registrations",
            "description": "Attendee registration and waitlist operations"
        },
        {
            "name": "health",
            "description": "System health endpoints"
        }
    ],
    lifespan=lifespan,
)

app.add_exception_handler(GatherlyError, gatherly_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)

# Middleware added last runs first

app.add_middleware(
    ErrorHandlerMiddleware,
    debug=settings.debug
)

if settings.enable_request_logging:
    app.add_middleware(LoggingMiddleware)

if settings.debug:
    # Development: Allow all origins for easier development
    cors_origins = ["*"]
    cors_allow_credentials = False  # Cannot use credentials with wildcard origins
else:
    cors_origins = settings.cors_origins
    cors_allow_credentials = settings.cors_allow_credentials

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
    expose_headers=settings.cors_expose_headers
)

# Include API routes
app.include_router(api_router)


@app.get("/", tags=["health"])
async def root():
    """Root endpoint for API information."""
    return {
        "message": "Gatherly Events API",
        "version": APP_VERSION,
        "docs_url": "/docs",
        "redoc_url": "/redoc",
        "status": "operational"
    }


@app.get("/health", response_model=HealthStatus, tags=["health"])
async def health_check():
    """Basic health check endpoint for uptime monitoring."""
    return HealthStatus(status="healthy", service="gatherly-events", version=APP_VERSION)
