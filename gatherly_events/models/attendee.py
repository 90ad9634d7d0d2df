"""
Attendee model recording one user's registration relationship with an event.
"""

import enum
import uuid
from datetime import datetime
from typing import Optional, TYPE_CHECKING

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, utcnow

if TYPE_CHECKING:
    from .event import Event
    from .user import User


class AttendeeStatus(enum.Enum):
    """Enumeration for attendee registration status."""
    REGISTERED = "registered"
    WAITLISTED = "waitlisted"
    CANCELLED = "cancelled"


class Attendee(Base):
    """Registration record; cancelled records are kept for history."""

    __tablename__ = "attendees"

    # Foreign key relationships
    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    status: Mapped[AttendeeStatus] = mapped_column(
        Enum(AttendeeStatus, values_callable=lambda statuses: [s.value for s in statuses]),
        nullable=False,
        index=True
    )

    # Waitlist ordering: registered_at first, admission_seq breaks ties.
    registered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )
    admission_seq: Mapped[int] = mapped_column(Integer, nullable=False)

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    # Relationships
    event: Mapped["Event"] = relationship("Event", back_populates="attendees")
    user: Mapped["User"] = relationship("User", back_populates="registrations")

    __table_args__ = (
        Index(
            "uq_attendees_active_registration",
            "event_id",
            "user_id",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
            sqlite_where=text("status <> 'cancelled'"),
        ),
        Index("ix_attendees_waitlist_order", "event_id", "status", "registered_at", "admission_seq"),
    )

    @property
    def is_active(self) -> bool:
        """Check if the record still holds a seat or a place in the queue."""
        return self.status != AttendeeStatus.CANCELLED

    def __repr__(self) -> str:
        """String representation of the attendee."""
        return (
            f"<Attendee(id={self.id}, event_id={self.event_id}, "
            f"user_id={self.user_id}, status={self.status.value})>"
        )
