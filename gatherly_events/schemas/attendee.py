"""
Attendee and organizer schemas for request/response validation.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from ..models.attendee import AttendeeStatus


class AttendeeResponse(BaseModel):
    """Schema for a registration record."""

    id: UUID
    event_id: UUID
    user_id: UUID
    status: AttendeeStatus
    registered_at: datetime
    admission_seq: int
    cancelled_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class AttendeeListResponse(BaseModel):
    """Registered attendees of an event."""

    attendees: List[AttendeeResponse]
    total: int


class WaitlistEntry(AttendeeResponse):
    """Waitlisted record with its 1-based promotion position."""

    position: int = Field(..., ge=1, description="Position in the promotion queue")


class WaitlistResponse(BaseModel):
    """Waitlist of an event in promotion order."""

    entries: List[WaitlistEntry]
    total: int


class MyStatusResponse(AttendeeResponse):
    """Caller's active record; position is set while waitlisted."""

    position: Optional[int] = None


class OrganizerAdd(BaseModel):
    """Schema for adding an organizer by user id or email."""

    user_id: Optional[UUID] = None
    email: Optional[EmailStr] = None

    @model_validator(mode='after')
    def exactly_one_identifier(self):
        if (self.user_id is None) == (self.email is None):
            raise ValueError('Provide exactly one of user_id or email')
        return self

