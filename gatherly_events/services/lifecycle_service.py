"""
Lifecycle engine enforcing the event status state machine.
"""

import logging
from typing import Dict, FrozenSet, List, Union
from uuid import UUID

from sqlalchemy import inspect, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from ..cache import CacheInvalidator, event_lock
from ..models.event import Event, EventStatus
from ..models.user import User
from ..utils.exceptions import (
    ConcurrencyConflict,
    EventNotFoundError,
    InvalidTransition,
    Unauthorized,
)
from ..utils.logging_config import log_business_event
from ..utils.retry import retry_on_concurrency_error

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[EventStatus, FrozenSet[EventStatus]] = {
    EventStatus.DRAFT: frozenset({EventStatus.UPCOMING, EventStatus.CANCELLED}),
    EventStatus.UPCOMING: frozenset({EventStatus.ONGOING, EventStatus.CANCELLED}),
    EventStatus.ONGOING: frozenset({EventStatus.COMPLETED, EventStatus.CANCELLED}),
    EventStatus.COMPLETED: frozenset(),
    EventStatus.CANCELLED: frozenset(),
}

# Stable presentation order for allowed targets
_STATUS_ORDER = list(EventStatus)


async def reload_if_expired(session: AsyncSession, instance) -> None:
    """Reload an instance whose attributes were expired by a rollback on a retry."""
    state = inspect(instance)
    if state.persistent and state.expired_attributes:
        await session.refresh(instance)


async def get_event_for_update(session: AsyncSession, event_id: UUID) -> Event:
    """
    Load the current state of an event and lock its row.

    The row lock applies on PostgreSQL; on every backend the version column
    checked at flush time rejects writes based on a stale read.
    """
    query = (
        select(Event)
        .where(Event.id == event_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    result = await session.execute(query)
    event = result.scalar_one_or_none()

    if not event:
        raise EventNotFoundError(str(event_id))

    return event


class LifecycleEngine:
    """Validates and applies event status transitions."""

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def is_open_for_registration(status: EventStatus) -> bool:
        """Only published events that have not started accept new registrations."""
        return status == EventStatus.UPCOMING

    @staticmethod
    def allowed_targets(status: EventStatus) -> List[EventStatus]:
        """Statuses reachable from the given status in one transition."""
        targets = ALLOWED_TRANSITIONS[status]
        return [s for s in _STATUS_ORDER if s in targets]

    @staticmethod
    def is_terminal(status: EventStatus) -> bool:
        return not ALLOWED_TRANSITIONS[status]

    @staticmethod
    def can_manage(event: Event, actor: User) -> bool:
        """Organizers of the event and admins may change it."""
        return actor.is_admin or event.is_organized_by(actor.id)

    def ensure_can_manage(self, event: Event, actor: User) -> None:
        if not self.can_manage(event, actor):
            raise Unauthorized(str(event.id), str(actor.id))

    def validate_transition(self, event: Event, target_status: EventStatus) -> None:
        """
        Check a transition against the state machine table.

        Raises:
            InvalidTransition: When target_status is not reachable from the
                event's current status
        """
        if target_status not in ALLOWED_TRANSITIONS[event.status]:
            raise InvalidTransition(
                str(event.id),
                event.status.value,
                target_status.value,
                [s.value for s in self.allowed_targets(event.status)]
            )

    @retry_on_concurrency_error()
    async def transition(
        self,
        event_id: UUID,
        actor: User,
        target_status: Union[EventStatus, str]
    ) -> Event:
        """
        Move an event to a new lifecycle status.

        Args:
            event_id: ID of the event to transition
            actor: User requesting the change
            target_status: Desired status

        Returns:
            The updated event

        Raises:
            EventNotFoundError: When the event does not exist
            Unauthorized: When the actor is neither organizer nor admin
            InvalidTransition: When the table forbids the move
            ConcurrencyConflict: When retries against concurrent writers are exhausted
        """
        target_status = EventStatus(target_status)
        await reload_if_expired(self.session, actor)
        logger.info(f"User {actor.id} transitioning event {event_id} to {target_status.value}")

        async with event_lock(str(event_id)):
            try:
                event = await get_event_for_update(self.session, event_id)
                self.ensure_can_manage(event, actor)
                previous_status = self.apply_transition(event, target_status)
                event.bump_version()

                await self.session.commit()

            except StaleDataError:
                await self.session.rollback()
                raise ConcurrencyConflict(f"Event {event_id} was modified by another transaction")
            except Exception:
                await self.session.rollback()
                raise

        await CacheInvalidator.invalidate_event_caches(str(event_id))
        log_status_change(event, previous_status, actor)
        return event

    def apply_transition(self, event: Event, target_status: EventStatus) -> EventStatus:
        """Validate and set the status of a locked event; returns the previous status."""
        self.validate_transition(event, target_status)
        previous_status = event.status
        event.status = target_status
        return previous_status


def log_status_change(event: Event, previous_status: EventStatus, actor: User) -> None:
    logger.info(f"Event {event.id} moved from {previous_status.value} to {event.status.value}")
    log_business_event(
        "event_status_changed",
        {
            "event_id": str(event.id),
            "from_status": previous_status.value,
            "to_status": event.status.value,
        },
        user_id=str(actor.id)
    )
