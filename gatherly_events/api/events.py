"""
Event management API endpoints.
"""

import math
from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models import EventStatus, User
from ..schemas.attendee import (
    AttendeeListResponse,
    AttendeeResponse,
    OrganizerAdd,
    WaitlistEntry,
    WaitlistResponse,
)
from ..schemas.common import ErrorResponse
from ..schemas.event import (
    EventCreate,
    EventFilters,
    EventListResponse,
    EventResponse,
    EventStats,
    EventUpdate,
    TransitionOptions,
    TransitionRequest,
)
from ..services.event_service import EventService
from ..utils.dependencies import get_current_user


router = APIRouter(
    prefix="/events",
    tags=["events"],
    responses={
        401: {"model": ErrorResponse, "description": "Missing credentials or not an organizer"},
        404: {"model": ErrorResponse, "description": "Event not found"},
    }
)


def get_event_service(db: AsyncSession = Depends(get_db)) -> EventService:
    """Dependency to get event service instance."""
    return EventService(db)


@router.post("", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
async def create_event(
    event_data: EventCreate,
    current_user: User = Depends(get_current_user),
    event_service: EventService = Depends(get_event_service)
):
    """
    Create a new event.

    Only organizers and admins can create events. The creator becomes the
    event's first organizer and the event starts as draft unless created
    directly as upcoming.
    """
    return await event_service.create_event(current_user, event_data)


@router.get("", response_model=EventListResponse)
async def list_events(
    page: int = Query(1, ge=1, description="Page number"),
    size: int = Query(20, ge=1, le=100, description="Page size"),
    event_status: Optional[EventStatus] = Query(None, alias="status", description="Filter by status"),
    search: Optional[str] = Query(None, description="Search in title, description, or location"),
    date_from: Optional[datetime] = Query(None, description="Events starting from this date"),
    date_to: Optional[datetime] = Query(None, description="Events starting until this date"),
    organized_by: Optional[UUID] = Query(None, description="Events organized by this user"),
    current_user: User = Depends(get_current_user),
    event_service: EventService = Depends(get_event_service)
):
    """Get list of events with filtering and pagination."""
    filters = EventFilters(
        status=event_status,
        search=search,
        date_from=date_from,
        date_to=date_to,
        organized_by=organized_by
    )

    events, total = await event_service.list_events(filters, page, size)

    return EventListResponse(
        events=[EventResponse.model_validate(event) for event in events],
        total=total,
        page=page,
        size=size,
        pages=math.ceil(total / size) if total > 0 else 0
    )


@router.get("/{event_id}", response_model=EventResponse)
async def get_event(
    event_id: UUID,
    current_user: User = Depends(get_current_user),
    event_service: EventService = Depends(get_event_service)
):
    """Get event details by ID."""
    return await event_service.get_event(event_id)


@router.put(
    "/{event_id}",
    response_model=EventResponse,
    responses={409: {"model": ErrorResponse, "description": "Invalid transition or capacity below occupancy"}}
)
async def update_event(
    event_id: UUID,
    event_data: EventUpdate,
    current_user: User = Depends(get_current_user),
    event_service: EventService = Depends(get_event_service)
):
    """
    Update an event.

    Organizers and admins only. A capacity change may promote waitlisted
    attendees; a status change follows the lifecycle rules.
    """
    return await event_service.update_event(event_id, current_user, event_data)


@router.post(
    "/{event_id}:transition",
    response_model=EventResponse,
    responses={409: {"model": ErrorResponse, "description": "Transition not allowed"}}
)
async def transition_event(
    event_id: UUID,
    request: TransitionRequest,
    current_user: User = Depends(get_current_user),
    event_service: EventService = Depends(get_event_service)
):
    """Move an event to another lifecycle status."""
    return await event_service.lifecycle.transition(event_id, current_user, request.target_status)


@router.get("/{event_id}/transitions", response_model=TransitionOptions)
async def get_transition_options(
    event_id: UUID,
    current_user: User = Depends(get_current_user),
    event_service: EventService = Depends(get_event_service)
):
    """Statuses the event can move to from its current status."""
    return await event_service.get_transition_options(event_id)


@router.post("/{event_id}/organizers", response_model=EventResponse)
async def add_organizer(
    event_id: UUID,
    payload: OrganizerAdd,
    current_user: User = Depends(get_current_user),
    event_service: EventService = Depends(get_event_service)
):
    """Add a user, by id or email, to the event's organizer team."""
    return await event_service.add_organizer(event_id, current_user, payload)


@router.delete("/{event_id}/organizers/{user_id}", response_model=EventResponse)
async def remove_organizer(
    event_id: UUID,
    user_id: UUID,
    current_user: User = Depends(get_current_user),
    event_service: EventService = Depends(get_event_service)
):
    """Remove a user from the event's organizer team; the last organizer stays."""
    return await event_service.remove_organizer(event_id, current_user, user_id)


@router.get("/{event_id}/attendees", response_model=AttendeeListResponse)
async def list_attendees(
    event_id: UUID,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    event_service: EventService = Depends(get_event_service)
):
    """Registered attendees in admission order; organizers and admins only."""
    attendees, total = await event_service.list_attendees(event_id, current_user, limit, offset)
    return AttendeeListResponse(
        attendees=[AttendeeResponse.model_validate(a) for a in attendees],
        total=total
    )


@router.get("/{event_id}/waitlist", response_model=WaitlistResponse)
async def list_waitlist(
    event_id: UUID,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    event_service: EventService = Depends(get_event_service)
):
    """Waitlisted attendees in promotion order; organizers and admins only."""
    entries, total = await event_service.list_waitlist(event_id, current_user, limit, offset)
    return WaitlistResponse(
        entries=[
            WaitlistEntry(
                **AttendeeResponse.model_validate(attendee).model_dump(),
                position=position
            )
            for position, attendee in entries
        ],
        total=total
    )


@router.get("/{event_id}/stats", response_model=EventStats)
async def get_event_stats(
    event_id: UUID,
    current_user: User = Depends(get_current_user),
    event_service: EventService = Depends(get_event_service)
):
    """Attendance statistics; organizers and admins only."""
    return await event_service.get_event_stats(event_id, current_user)
