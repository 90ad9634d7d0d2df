"""
Admission controller for registrations, the waitlist and promotion.

Every mutation runs as one unit per event: read the event row, decide, write
attendee rows and bump the event version. The version check at flush makes a
decision based on a stale read fail with ConcurrencyConflict, which is retried
with backoff before being surfaced.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from ..cache import CacheInvalidator, event_lock
from ..models.attendee import Attendee, AttendeeStatus
from ..models.base import utcnow
from ..models.event import Event
from ..models.user import User
from ..utils.exceptions import (
    AlreadyRegistered,
    CapacityBelowOccupancy,
    ConcurrencyConflict,
    EventNotOpen,
    NotRegistered,
    ValidationError,
)
from ..utils.logging_config import log_business_event
from ..utils.retry import retry_on_concurrency_error
from .lifecycle_service import LifecycleEngine, get_event_for_update, reload_if_expired

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (AttendeeStatus.REGISTERED, AttendeeStatus.WAITLISTED)


@dataclass
class UnregisterResult:
    """Outcome of an unregister call."""
    cancelled: Attendee
    promoted: List[Attendee] = field(default_factory=list)


@dataclass
class ReconcileResult:
    """Outcome of an occupancy reconciliation pass."""
    event_id: UUID
    recorded_occupancy: int
    actual_occupancy: int
    promoted: List[Attendee] = field(default_factory=list)
    overbooked: bool = False

    @property
    def drifted(self) -> bool:
        return self.recorded_occupancy != self.actual_occupancy


def log_capacity_change(
    event: Event,
    previous_capacity: int,
    promoted: List[Attendee],
    actor: User
) -> None:
    logger.info(
        f"Event {event.id} capacity {previous_capacity} -> {event.capacity}; "
        f"promoted {len(promoted)} from waitlist"
    )
    log_business_event(
        "event_capacity_changed",
        {
            "event_id": str(event.id),
            "from_capacity": previous_capacity,
            "to_capacity": event.capacity,
            "promoted_attendee_ids": [str(a.id) for a in promoted],
        },
        user_id=str(actor.id)
    )


class AdmissionController:
    """Owns the registration, waitlist and cancellation workflow for attendees."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.lifecycle = LifecycleEngine(session)

    @retry_on_concurrency_error()
    async def register(self, event_id: UUID, user_id: UUID) -> Attendee:
        """
        Register a user for an event, or queue them when it is full.

        Args:
            event_id: ID of the event
            user_id: ID of the registering user

        Returns:
            The created attendee record, either registered or waitlisted

        Raises:
            EventNotOpen: When the event is not accepting registrations
            AlreadyRegistered: When the user already holds an active record
            ConcurrencyConflict: When retries against concurrent writers are exhausted
        """
        logger.info(f"User {user_id} registering for event {event_id}")

        async with event_lock(str(event_id)):
            try:
                event = await get_event_for_update(self.session, event_id)

                if not LifecycleEngine.is_open_for_registration(event.status):
                    raise EventNotOpen(str(event_id), event.status.value)

                existing = await self._get_active_record(event_id, user_id)
                if existing:
                    raise AlreadyRegistered(str(event_id), str(user_id), existing.status.value)

                admission_seq = event.bump_version()

                if event.occupancy < event.capacity:
                    status = AttendeeStatus.REGISTERED
                    event.occupancy += 1
                else:
                    status = AttendeeStatus.WAITLISTED

                attendee = Attendee(
                    event_id=event_id,
                    user_id=user_id,
                    status=status,
                    registered_at=utcnow(),
                    admission_seq=admission_seq
                )
                self.session.add(attendee)

                await self.session.commit()

            except StaleDataError:
                await self.session.rollback()
                raise ConcurrencyConflict(f"Event {event_id} was modified by another transaction")
            except IntegrityError as e:
                await self.session.rollback()
                if self._is_active_registration_violation(e):
                    raise AlreadyRegistered(str(event_id), str(user_id))
                logger.error(f"Database integrity error during registration: {e}")
                raise ValidationError("Registration rejected by data constraints")
            except Exception:
                await self.session.rollback()
                raise

        await CacheInvalidator.invalidate_event_caches(str(event_id))

        logger.info(
            f"User {user_id} {status.value} for event {event_id} "
            f"(occupancy {event.occupancy}/{event.capacity})"
        )
        log_business_event(
            "attendee_registered" if status == AttendeeStatus.REGISTERED else "attendee_waitlisted",
            {"event_id": str(event_id), "attendee_id": str(attendee.id)},
            user_id=str(user_id)
        )
        return attendee

    @retry_on_concurrency_error()
    async def unregister(self, event_id: UUID, user_id: UUID) -> UnregisterResult:
        """
        Cancel a user's registration or leave the waitlist.

        A freed seat is handed to the head of the waitlist in the same
        transaction, so occupancy never shows a vacancy while people wait.

        Raises:
            NotRegistered: When the user has no active record, including
                when it was already cancelled
            ConcurrencyConflict: When retries against concurrent writers are exhausted
        """
        logger.info(f"User {user_id} unregistering from event {event_id}")

        async with event_lock(str(event_id)):
            try:
                event = await get_event_for_update(self.session, event_id)

                record = await self._get_active_record(event_id, user_id)
                if not record:
                    raise NotRegistered(str(event_id), str(user_id))

                held_seat = record.status == AttendeeStatus.REGISTERED
                record.status = AttendeeStatus.CANCELLED
                record.cancelled_at = utcnow()
                event.bump_version()

                promoted: List[Attendee] = []
                if held_seat:
                    event.occupancy -= 1
                    promoted = await self._fill_vacancies(event)

                await self.session.commit()

            except StaleDataError:
                await self.session.rollback()
                raise ConcurrencyConflict(f"Event {event_id} was modified by another transaction")
            except Exception:
                await self.session.rollback()
                raise

        await CacheInvalidator.invalidate_event_caches(str(event_id))

        logger.info(
            f"User {user_id} cancelled for event {event_id}; "
            f"promoted {len(promoted)} from waitlist"
        )
        log_business_event(
            "attendee_cancelled",
            {
                "event_id": str(event_id),
                "attendee_id": str(record.id),
                "released_seat": held_seat,
                "promoted_attendee_ids": [str(a.id) for a in promoted],
            },
            user_id=str(user_id)
        )
        return UnregisterResult(cancelled=record, promoted=promoted)

    @retry_on_concurrency_error()
    async def change_capacity(self, event_id: UUID, actor: User, new_capacity: int) -> Event:
        """
        Change an event's capacity and promote waitlisted attendees into new seats.

        Raises:
            Unauthorized: When the actor is neither organizer nor admin
            ValidationError: When new_capacity is not positive
            CapacityBelowOccupancy: When new_capacity is below current occupancy
        """
        await reload_if_expired(self.session, actor)
        logger.info(f"User {actor.id} changing capacity of event {event_id} to {new_capacity}")

        async with event_lock(str(event_id)):
            try:
                event = await get_event_for_update(self.session, event_id)
                self.lifecycle.ensure_can_manage(event, actor)

                previous_capacity = event.capacity
                event.bump_version()
                promoted = await self.apply_capacity(event, new_capacity)

                await self.session.commit()

            except StaleDataError:
                await self.session.rollback()
                raise ConcurrencyConflict(f"Event {event_id} was modified by another transaction")
            except Exception:
                await self.session.rollback()
                raise

        await CacheInvalidator.invalidate_event_caches(str(event_id))
        log_capacity_change(event, previous_capacity, promoted, actor)
        return event

    async def apply_capacity(self, event: Event, new_capacity: int) -> List[Attendee]:
        """
        Set the capacity of a locked event and fill new seats from the waitlist.

        The caller bumps the version and commits.

        Raises:
            ValidationError: When new_capacity is not positive
            CapacityBelowOccupancy: When new_capacity is below current occupancy
        """
        if new_capacity <= 0:
            raise ValidationError(
                "Capacity must be positive",
                field_errors={"capacity": ["must be greater than 0"]}
            )
        if new_capacity < event.occupancy:
            raise CapacityBelowOccupancy(str(event.id), new_capacity, event.occupancy)

        event.capacity = new_capacity
        return await self._fill_vacancies(event)

    @retry_on_concurrency_error()
    async def reconcile_occupancy(self, event_id: UUID) -> ReconcileResult:
        """
        Recompute occupancy from attendee rows and fill any free seats.

        Used by the periodic maintenance task; a drift means some writer
        bypassed this controller.
        """
        async with event_lock(str(event_id)):
            try:
                event = await get_event_for_update(self.session, event_id)
                actual = await self._count_registered(event_id)
                result = ReconcileResult(
                    event_id=event_id,
                    recorded_occupancy=event.occupancy,
                    actual_occupancy=actual
                )

                if actual > event.capacity:
                    # Never shrink registrations here; an organizer has to resolve it.
                    logger.error(
                        f"Event {event_id} has {actual} registered attendees "
                        f"for capacity {event.capacity}"
                    )
                    result.overbooked = True
                    await self.session.rollback()
                    return result

                if result.drifted:
                    logger.warning(
                        f"Occupancy drift on event {event_id}: "
                        f"recorded {event.occupancy}, actual {actual}"
                    )
                    event.occupancy = actual

                result.promoted = await self._fill_vacancies(event)

                if result.drifted or result.promoted:
                    event.bump_version()

                await self.session.commit()

            except StaleDataError:
                await self.session.rollback()
                raise ConcurrencyConflict(f"Event {event_id} was modified by another transaction")
            except Exception:
                await self.session.rollback()
                raise

        if result.drifted or result.promoted:
            await CacheInvalidator.invalidate_event_caches(str(event_id))

        return result

    async def get_active_registration(self, event_id: UUID, user_id: UUID) -> Optional[Attendee]:
        """Get the user's registered or waitlisted record for an event."""
        return await self._get_active_record(event_id, user_id, lock=False)

    async def list_attendees(
        self,
        event_id: UUID,
        status: AttendeeStatus,
        limit: int = 100,
        offset: int = 0
    ) -> List[Attendee]:
        """
        Get attendee records for an event in admission order.

        For waitlisted records the result order is the promotion order.
        """
        query = (
            select(Attendee)
            .where(
                and_(
                    Attendee.event_id == event_id,
                    Attendee.status == status
                )
            )
            .order_by(Attendee.registered_at.asc(), Attendee.admission_seq.asc())
            .limit(limit)
            .offset(offset)
        )

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count_by_status(self, event_id: UUID) -> Dict[AttendeeStatus, int]:
        """Count attendee records per status for an event."""
        query = (
            select(Attendee.status, func.count(Attendee.id))
            .where(Attendee.event_id == event_id)
            .group_by(Attendee.status)
        )

        result = await self.session.execute(query)
        counts = {status: 0 for status in AttendeeStatus}
        for status, count in result.all():
            counts[status] = count
        return counts

    # Private helper methods

    async def _fill_vacancies(self, event: Event) -> List[Attendee]:
        """Promote waitlisted attendees, oldest first, into free seats."""
        # Closed events admit nobody, their own waitlist included
        if not LifecycleEngine.is_open_for_registration(event.status):
            return []

        vacancies = event.capacity - event.occupancy
        if vacancies <= 0:
            return []

        query = (
            select(Attendee)
            .where(
                and_(
                    Attendee.event_id == event.id,
                    Attendee.status == AttendeeStatus.WAITLISTED
                )
            )
            .order_by(Attendee.registered_at.asc(), Attendee.admission_seq.asc())
            .limit(vacancies)
            .with_for_update()
        )

        result = await self.session.execute(query)
        promoted = list(result.scalars().all())

        for attendee in promoted:
            attendee.status = AttendeeStatus.REGISTERED
            event.occupancy += 1
            logger.info(f"Promoted attendee {attendee.id} from waitlist for event {event.id}")

        return promoted

    async def _get_active_record(
        self,
        event_id: UUID,
        user_id: UUID,
        lock: bool = True
    ) -> Optional[Attendee]:
        """Get the single non-cancelled record for an (event, user) pair."""
        query = (
            select(Attendee)
            .where(
                and_(
                    Attendee.event_id == event_id,
                    Attendee.user_id == user_id,
                    Attendee.status.in_(ACTIVE_STATUSES)
                )
            )
            .execution_options(populate_existing=True)
        )
        if lock:
            query = query.with_for_update()

        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def _count_registered(self, event_id: UUID) -> int:
        query = (
            select(func.count(Attendee.id))
            .where(
                and_(
                    Attendee.event_id == event_id,
                    Attendee.status == AttendeeStatus.REGISTERED
                )
            )
        )
        result = await self.session.execute(query)
        return result.scalar() or 0

    @staticmethod
    def _is_active_registration_violation(error: IntegrityError) -> bool:
        message = str(error.orig) if error.orig is not None else str(error)
        return (
            "uq_attendees_active_registration" in message
            or "attendees.event_id, attendees.user_id" in message
        )
