"""API endpoints for the Gatherly events service."""

from fastapi import APIRouter
from .events import router as events_router
from .registrations import router as registrations_router

# Create main API router
api_router = APIRouter(prefix="/api/v1")

# Registration routes first so ":register" never reaches the event routes
api_router.include_router(registrations_router)
api_router.include_router(events_router)

__all__ = ["api_router"]
