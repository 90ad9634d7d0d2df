"""
Event schemas for request/response validation.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, ConfigDict

from ..models.event import EventStatus

# Statuses an event may be created in
INITIAL_STATUSES = (EventStatus.DRAFT, EventStatus.UPCOMING)


class EventBase(BaseModel):
    """Base event schema with common fields."""

    title: str = Field(..., min_length=1, max_length=255, description="Event title")
    description: Optional[str] = Field(None, description="Event description")
    location: Optional[str] = Field(None, max_length=255, description="Event location")
    start_date: datetime = Field(..., description="Event start date and time")
    end_date: datetime = Field(..., description="Event end date and time")
    capacity: int = Field(..., gt=0, description="Maximum number of registered attendees")

    @field_validator('end_date')
    @classmethod
    def end_date_not_before_start(cls, v, info):
        """Validate that the event does not end before it starts."""
        start_date = info.data.get('start_date')
        if start_date is not None and v < start_date:
            raise ValueError('end_date must not be before start_date')
        return v


class EventCreate(EventBase):
    """Schema for creating a new event."""

    status: EventStatus = Field(
        default=EventStatus.DRAFT,
        description="Initial status; only draft or upcoming"
    )

    @field_validator('status')
    @classmethod
    def status_must_be_initial(cls, v):
        if v not in INITIAL_STATUSES:
            raise ValueError('Events can only be created as draft or upcoming')
        return v


class EventUpdate(BaseModel):
    """
    Schema for updating an existing event.

    Capacity changes go through admission control and status changes
    through the lifecycle rules; if either is rejected nothing is applied.
    """

    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    location: Optional[str] = Field(None, max_length=255)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    capacity: Optional[int] = Field(None, gt=0)
    status: Optional[EventStatus] = None


class EventResponse(BaseModel):
    """Schema for event response."""

    id: UUID
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    start_date: datetime
    end_date: datetime
    status: EventStatus
    capacity: int
    occupancy: int
    available_spots: int
    is_full: bool
    capacity_usage_percentage: float
    version: int
    organizer_ids: List[UUID]
    created_by_id: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class EventListResponse(BaseModel):
    """Schema for paginated event list response."""

    events: list[EventResponse]
    total: int
    page: int
    size: int
    pages: int


class EventFilters(BaseModel):
    """Schema for event filtering parameters."""

    status: Optional[EventStatus] = Field(None, description="Filter by lifecycle status")
    search: Optional[str] = Field(None, description="Search in title, description, or location")
    date_from: Optional[datetime] = Field(None, description="Events starting from this date")
    date_to: Optional[datetime] = Field(None, description="Events starting until this date")
    organized_by: Optional[UUID] = Field(None, description="Events organized by this user")

    @field_validator('date_to')
    @classmethod
    def date_to_after_date_from(cls, v, info):
        """Validate that date_to is after date_from."""
        if v is not None and info.data.get('date_from') is not None:
            if v < info.data['date_from']:
                raise ValueError('date_to must be after date_from')
        return v


class TransitionRequest(BaseModel):
    """Schema for requesting a lifecycle transition."""

    target_status: EventStatus = Field(..., description="Status to move the event to")


class TransitionOptions(BaseModel):
    """Transitions currently available for an event."""

    event_id: UUID
    current_status: EventStatus
    allowed_targets: List[EventStatus]
    is_open_for_registration: bool


class EventStats(BaseModel):
    """Attendance statistics for an event."""

    event_id: UUID
    total_attendees: int = Field(..., description="Registered attendees")
    waitlisted_attendees: int
    cancelled_attendees: int
    capacity: int
    available_spots: int
    capacity_usage_percentage: float
    days_until_event: int = Field(..., description="Whole days until start; negative once started")
