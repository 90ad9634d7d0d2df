"""
Event model holding lifecycle status and admission capacity.
"""

import enum
import uuid
from datetime import datetime
from typing import List, Optional, TYPE_CHECKING

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .attendee import Attendee
    from .user import User


class EventStatus(enum.Enum):
    """Enumeration for event lifecycle status."""
    DRAFT = "draft"
    UPCOMING = "upcoming"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


event_organizers = Table(
    "event_organizers",
    Base.metadata,
    Column(
        "event_id",
        Uuid(as_uuid=True),
        ForeignKey("events.id", ondelete="CASCADE"),
        primary_key=True
    ),
    Column(
        "user_id",
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True
    ),
)


class Event(Base):
    """Event model for lifecycle and capacity management."""

    __tablename__ = "events"

    # Event basic information
    title: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Event timing
    start_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True
    )
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Lifecycle
    status: Mapped[EventStatus] = mapped_column(
        Enum(EventStatus, values_callable=lambda statuses: [s.value for s in statuses]),
        default=EventStatus.DRAFT,
        nullable=False,
        index=True
    )

    # Capacity management
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    occupancy: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Optimistic locking for concurrency control; bumped by every admission
    # decision so it doubles as the per-event admission sequence.
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )

    # Relationships
    organizers: Mapped[List["User"]] = relationship(
        "User",
        secondary=event_organizers,
        lazy="selectin"
    )

    attendees: Mapped[List["Attendee"]] = relationship(
        "Attendee",
        back_populates="event",
        cascade="all, delete-orphan"
    )

    # Constraints
    __table_args__ = (
        CheckConstraint("capacity > 0", name="ck_events_capacity_positive"),
        CheckConstraint("occupancy >= 0", name="ck_events_occupancy_non_negative"),
        CheckConstraint("occupancy <= capacity", name="ck_events_occupancy_within_capacity"),
        CheckConstraint("end_date >= start_date", name="ck_events_dates_ordered"),
        CheckConstraint("version > 0", name="ck_events_version_positive"),
    )

    __mapper_args__ = {
        "version_id_col": version,
        "version_id_generator": False,
    }

    @property
    def organizer_ids(self) -> List[uuid.UUID]:
        """Users with transition and edit authority over the event."""
        return [organizer.id for organizer in self.organizers]

    @property
    def is_full(self) -> bool:
        """Check if every seat is held by a registered attendee."""
        return self.occupancy >= self.capacity

    @property
    def available_spots(self) -> int:
        """Number of free registration slots."""
        return max(self.capacity - self.occupancy, 0)

    @property
    def capacity_usage_percentage(self) -> float:
        """Get the capacity utilization percentage."""
        if self.capacity == 0:
            return 0.0
        return round(self.occupancy / self.capacity * 100, 2)

    def is_organized_by(self, user_id: uuid.UUID) -> bool:
        """Check if a user is one of the event's organizers."""
        return user_id in self.organizer_ids

    def bump_version(self) -> int:
        """Advance the optimistic lock; the flush fails if another writer got there first."""
        self.version = self.version + 1
        return self.version

    def __repr__(self) -> str:
        """String representation of the event."""
        return (
            f"<Event(id={self.id}, title='{self.title}', status={self.status.value}, "
            f"occupancy={self.occupancy}/{self.capacity}, version={self.version})>"
        )
