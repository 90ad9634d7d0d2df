"""
Event service for event management, organizer teams and attendance read models.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import and_, func, or_, select, true
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from ..cache import CacheInvalidator, CacheKeyBuilder, CacheTTL, event_lock, get_cache
from ..models.attendee import Attendee, AttendeeStatus
from ..models.event import Event, EventStatus, event_organizers
from ..models.user import User
from ..schemas.attendee import OrganizerAdd
from ..schemas.event import EventCreate, EventFilters, EventStats, EventUpdate, TransitionOptions
from ..utils.exceptions import (
    AttendeeNotFoundError,
    AuthorizationError,
    ConcurrencyConflict,
    EventNotFoundError,
    NotFoundError,
    UserNotFoundError,
    ValidationError,
)
from ..utils.logging_config import log_business_event
from ..utils.retry import retry_on_concurrency_error
from .admission_service import AdmissionController, log_capacity_change
from .lifecycle_service import (
    LifecycleEngine,
    get_event_for_update,
    log_status_change,
    reload_if_expired,
)

logger = logging.getLogger(__name__)

DESCRIPTIVE_FIELDS = ("title", "description", "location", "start_date", "end_date")


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class EventService:
    """Service class for event management operations."""

    def __init__(self, db: AsyncSession):
        """Initialize the event service with database session."""
        self.db = db
        self.cache = get_cache()
        self.lifecycle = LifecycleEngine(db)
        self.admission = AdmissionController(db)

    async def create_event(self, actor: User, event_data: EventCreate) -> Event:
        """
        Create a new event with the actor as its first organizer.

        Raises:
            AuthorizationError: If the actor's role may not create events
        """
        if not actor.can_organize:
            raise AuthorizationError(
                "Only organizers and admins can create events",
                required_permission="organizer"
            )

        event = Event(
            title=event_data.title,
            description=event_data.description,
            location=event_data.location,
            start_date=event_data.start_date,
            end_date=event_data.end_date,
            status=event_data.status,
            capacity=event_data.capacity,
            occupancy=0,
            version=1,
            created_by_id=actor.id,
        )
        event.organizers = [actor]

        try:
            self.db.add(event)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Event {event.id} created by {actor.id} in status {event.status.value}")
        log_business_event(
            "event_created",
            {"event_id": str(event.id), "status": event.status.value, "capacity": event.capacity},
            user_id=str(actor.id)
        )
        return event

    async def get_event(self, event_id: UUID) -> Event:
        """
        Get event by ID.

        Raises:
            EventNotFoundError: If event is not found
        """
        result = await self.db.execute(select(Event).where(Event.id == event_id))
        event = result.scalar_one_or_none()
        if not event:
            raise EventNotFoundError(str(event_id))
        return event

    async def list_events(
        self,
        filters: EventFilters,
        page: int = 1,
        size: int = 20
    ) -> Tuple[List[Event], int]:
        """
        Get events with filtering and pagination.

        Returns:
            Tuple of (events list, total count)
        """
        conditions = []

        if filters.status:
            conditions.append(Event.status == filters.status)

        if filters.search:
            search_term = f"%{filters.search}%"
            conditions.append(
                or_(
                    Event.title.ilike(search_term),
                    Event.description.ilike(search_term),
                    Event.location.ilike(search_term)
                )
            )

        if filters.date_from:
            conditions.append(Event.start_date >= filters.date_from)

        if filters.date_to:
            conditions.append(Event.start_date <= filters.date_to)

        if filters.organized_by:
            conditions.append(
                Event.id.in_(
                    select(event_organizers.c.event_id)
                    .where(event_organizers.c.user_id == filters.organized_by)
                )
            )

        where_clause = and_(*conditions) if conditions else true()

        count_result = await self.db.execute(
            select(func.count(Event.id)).where(where_clause)
        )
        total = count_result.scalar() or 0

        query = (
            select(Event)
            .where(where_clause)
            .order_by(Event.start_date.asc(), Event.id.asc())
            .offset((page - 1) * size)
            .limit(size)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    @retry_on_concurrency_error()
    async def update_event(self, event_id: UUID, actor: User, event_data: EventUpdate) -> Event:
        """
        Update an event in one transaction.

        Descriptive fields are applied first, then a status change through the
        lifecycle rules, then a capacity change through admission control, so
        promotion only happens if the resulting status is open. Any rejected
        part rolls back the whole update.
        """
        changes = event_data.model_dump(exclude_unset=True)
        descriptive = {k: v for k, v in changes.items() if k in DESCRIPTIVE_FIELDS}
        target_status = changes.get("status")
        new_capacity = changes.get("capacity")

        await reload_if_expired(self.db, actor)

        async with event_lock(str(event_id)):
            try:
                event = await get_event_for_update(self.db, event_id)
                self.lifecycle.ensure_can_manage(event, actor)

                if target_status == event.status:
                    target_status = None
                changed = bool(descriptive) or target_status is not None or new_capacity is not None
                if changed:
                    event.bump_version()

                if descriptive:
                    self._apply_details(event, descriptive)

                previous_status = None
                if target_status is not None:
                    previous_status = self.lifecycle.apply_transition(event, target_status)

                previous_capacity = event.capacity
                promoted = []
                if new_capacity is not None:
                    promoted = await self.admission.apply_capacity(event, new_capacity)

                await self.db.commit()

            except StaleDataError:
                await self.db.rollback()
                raise ConcurrencyConflict(f"Event {event_id} was modified by another transaction")
            except Exception:
                await self.db.rollback()
                raise

        if not changed:
            return event

        await CacheInvalidator.invalidate_event_caches(str(event_id))
        if descriptive:
            logger.info(f"Event {event_id} details updated by {actor.id}: {sorted(descriptive)}")
        if previous_status is not None:
            log_status_change(event, previous_status, actor)
        if new_capacity is not None:
            log_capacity_change(event, previous_capacity, promoted, actor)
        return event

    async def get_transition_options(self, event_id: UUID) -> TransitionOptions:
        """Transitions the server allows from the event's current status."""
        event = await self.get_event(event_id)
        return TransitionOptions(
            event_id=event.id,
            current_status=event.status,
            allowed_targets=LifecycleEngine.allowed_targets(event.status),
            is_open_for_registration=LifecycleEngine.is_open_for_registration(event.status)
        )

    @retry_on_concurrency_error()
    async def add_organizer(self, event_id: UUID, actor: User, payload: OrganizerAdd) -> Event:
        """
        Add a user to the event's organizer team; adding an existing organizer is a no-op.

        Raises:
            UserNotFoundError: If the referenced user does not exist
        """
        async with event_lock(str(event_id)):
            try:
                await reload_if_expired(self.db, actor)
                event = await get_event_for_update(self.db, event_id)
                self.lifecycle.ensure_can_manage(event, actor)

                user = await self._find_user(payload)
                added = not event.is_organized_by(user.id)
                if added:
                    event.organizers.append(user)
                    event.bump_version()

                await self.db.commit()

            except StaleDataError:
                await self.db.rollback()
                raise ConcurrencyConflict(f"Event {event_id} was modified by another transaction")
            except Exception:
                await self.db.rollback()
                raise

        if not added:
            return event

        await CacheInvalidator.invalidate_event_caches(str(event_id))
        logger.info(f"User {user.id} added as organizer of event {event_id} by {actor.id}")
        log_business_event(
            "organizer_added",
            {"event_id": str(event_id), "organizer_id": str(user.id)},
            user_id=str(actor.id)
        )
        return event

    @retry_on_concurrency_error()
    async def remove_organizer(self, event_id: UUID, actor: User, user_id: UUID) -> Event:
        """
        Remove a user from the event's organizer team.

        Raises:
            NotFoundError: If the user is not an organizer of the event
            ValidationError: If the user is the last organizer
        """
        async with event_lock(str(event_id)):
            try:
                await reload_if_expired(self.db, actor)
                event = await get_event_for_update(self.db, event_id)
                self.lifecycle.ensure_can_manage(event, actor)

                organizer = next((o for o in event.organizers if o.id == user_id), None)
                if organizer is None:
                    raise NotFoundError(
                        f"User {user_id} is not an organizer of event {event_id}",
                        resource_type="organizer",
                        resource_id=str(user_id)
                    )
                if len(event.organizers) == 1:
                    raise ValidationError(
                        "An event must keep at least one organizer",
                        details={"event_id": str(event_id), "user_id": str(user_id)}
                    )

                event.organizers.remove(organizer)
                event.bump_version()
                await self.db.commit()

            except StaleDataError:
                await self.db.rollback()
                raise ConcurrencyConflict(f"Event {event_id} was modified by another transaction")
            except Exception:
                await self.db.rollback()
                raise

        await CacheInvalidator.invalidate_event_caches(str(event_id))
        logger.info(f"User {user_id} removed as organizer of event {event_id} by {actor.id}")
        log_business_event(
            "organizer_removed",
            {"event_id": str(event_id), "organizer_id": str(user_id)},
            user_id=str(actor.id)
        )
        return event

    async def list_attendees(
        self,
        event_id: UUID,
        actor: User,
        limit: int = 100,
        offset: int = 0
    ) -> Tuple[List[Attendee], int]:
        """Registered attendees in admission order; organizers and admins only."""
        event = await self.get_event(event_id)
        self.lifecycle.ensure_can_manage(event, actor)

        attendees = await self.admission.list_attendees(
            event_id, AttendeeStatus.REGISTERED, limit=limit, offset=offset
        )
        counts = await self.admission.count_by_status(event_id)
        return attendees, counts[AttendeeStatus.REGISTERED]

    async def list_waitlist(
        self,
        event_id: UUID,
        actor: User,
        limit: int = 100,
        offset: int = 0
    ) -> Tuple[List[Tuple[int, Attendee]], int]:
        """Waitlisted attendees in promotion order with 1-based positions."""
        event = await self.get_event(event_id)
        self.lifecycle.ensure_can_manage(event, actor)

        waitlisted = await self.admission.list_attendees(
            event_id, AttendeeStatus.WAITLISTED, limit=limit, offset=offset
        )
        counts = await self.admission.count_by_status(event_id)
        entries = [(offset + index + 1, attendee) for index, attendee in enumerate(waitlisted)]
        return entries, counts[AttendeeStatus.WAITLISTED]

    async def get_my_status(self, event_id: UUID, user_id: UUID) -> Tuple[Attendee, Optional[int]]:
        """
        Get the caller's active record and, while waitlisted, its queue position.

        Raises:
            AttendeeNotFoundError: If the user holds no active record
        """
        await self.get_event(event_id)

        record = await self.admission.get_active_registration(event_id, user_id)
        if record is None:
            raise AttendeeNotFoundError(str(event_id), str(user_id))

        if record.status != AttendeeStatus.WAITLISTED:
            return record, None

        ahead = await self.db.execute(
            select(func.count(Attendee.id)).where(
                and_(
                    Attendee.event_id == event_id,
                    Attendee.status == AttendeeStatus.WAITLISTED,
                    or_(
                        Attendee.registered_at < record.registered_at,
                        and_(
                            Attendee.registered_at == record.registered_at,
                            Attendee.admission_seq < record.admission_seq
                        )
                    )
                )
            )
        )
        return record, (ahead.scalar() or 0) + 1

    async def get_event_stats(self, event_id: UUID, actor: User) -> EventStats:
        """Attendance statistics; organizers and admins only."""
        event = await self.get_event(event_id)
        self.lifecycle.ensure_can_manage(event, actor)

        cache_key = CacheKeyBuilder.event_stats(str(event_id))
        cached = await self.cache.get(cache_key)
        if cached:
            return EventStats(**cached)

        counts = await self.admission.count_by_status(event_id)
        days_until_event = (_as_utc(event.start_date) - datetime.now(timezone.utc)).days

        stats = EventStats(
            event_id=event.id,
            total_attendees=counts[AttendeeStatus.REGISTERED],
            waitlisted_attendees=counts[AttendeeStatus.WAITLISTED],
            cancelled_attendees=counts[AttendeeStatus.CANCELLED],
            capacity=event.capacity,
            available_spots=event.available_spots,
            capacity_usage_percentage=event.capacity_usage_percentage,
            days_until_event=days_until_event
        )

        await self.cache.set(cache_key, stats.model_dump(mode="json"), CacheTTL.EVENT_STATS)
        return stats

    async def list_open_event_ids(self) -> List[UUID]:
        """IDs of events currently accepting registrations."""
        result = await self.db.execute(
            select(Event.id).where(Event.status == EventStatus.UPCOMING)
        )
        return list(result.scalars().all())

    # Private helper methods

    @staticmethod
    def _apply_details(event: Event, fields: dict) -> None:
        start_date = fields.get("start_date", event.start_date)
        end_date = fields.get("end_date", event.end_date)
        if _as_utc(end_date) < _as_utc(start_date):
            raise ValidationError(
                "end_date must not be before start_date",
                field_errors={"end_date": ["must not be before start_date"]}
            )

        for field_name, value in fields.items():
            setattr(event, field_name, value)

    async def _find_user(self, payload: OrganizerAdd) -> User:
        if payload.user_id is not None:
            query = select(User).where(User.id == payload.user_id)
            identifier = str(payload.user_id)
        else:
            query = select(User).where(func.lower(User.email) == payload.email.lower())
            identifier = payload.email

        result = await self.db.execute(query)
        user = result.scalar_one_or_none()
        if user is None:
            raise UserNotFoundError(identifier)
        return user
