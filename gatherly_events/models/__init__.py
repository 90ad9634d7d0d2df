"""
Database models for the Gatherly events service.
"""

from .base import Base
from .user import User, UserRole
from .event import Event, EventStatus, event_organizers
from .attendee import Attendee, AttendeeStatus

__all__ = [
    "Base",
    "User",
    "UserRole",
    "Event",
    "EventStatus",
    "event_organizers",
    "Attendee",
    "AttendeeStatus",
]
