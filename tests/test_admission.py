import pytest

from gatherly_events.models import AttendeeStatus, EventStatus, UserRole
from gatherly_events.services.admission_service import AdmissionController
from gatherly_events.services.lifecycle_service import LifecycleEngine
from gatherly_events.utils.exceptions import (
    AlreadyRegistered,
    CapacityBelowOccupancy,
    EventNotOpen,
    NotRegistered,
    Unauthorized,
    ValidationError,
)


async def register_users(admission, event_id, users):
    return [await admission.register(event_id, user.id) for user in users]


async def test_register_until_full_then_waitlist(session, make_user, make_event, fetch_event):
    event = await make_event(capacity=2)
    users = [await make_user() for _ in range(4)]
    admission = AdmissionController(session)

    records = await register_users(admission, event.id, users)

    assert [r.status for r in records] == [
        AttendeeStatus.REGISTERED,
        AttendeeStatus.REGISTERED,
        AttendeeStatus.WAITLISTED,
        AttendeeStatus.WAITLISTED,
    ]
    stored = await fetch_event(event.id)
    assert stored.occupancy == 2
    assert stored.is_full


async def test_admission_sequence_increases_per_event(session, make_user, make_event):
    event = await make_event(capacity=1)
    users = [await make_user() for _ in range(3)]

    records = await register_users(AdmissionController(session), event.id, users)

    seqs = [r.admission_seq for r in records]
    assert seqs == sorted(seqs)
    assert len(set(seqs)) == 3


@pytest.mark.parametrize(
    "status",
    [EventStatus.DRAFT, EventStatus.ONGOING, EventStatus.COMPLETED, EventStatus.CANCELLED],
)
async def test_register_requires_upcoming_event(session, make_user, make_event, fetch_attendees, status):
    event = await make_event(status=status)
    event_id = event.id
    user = await make_user()

    with pytest.raises(EventNotOpen):
        await AdmissionController(session).register(event_id, user.id)

    assert await fetch_attendees(event_id) == []


async def test_register_twice_is_rejected(session, make_user, make_event, fetch_attendees):
    event = await make_event(capacity=1)
    event_id = event.id
    first, second = await make_user(), await make_user()
    second_id = second.id
    admission = AdmissionController(session)

    await admission.register(event_id, first.id)
    await admission.register(event_id, second_id)

    with pytest.raises(AlreadyRegistered) as exc_info:
        await admission.register(event_id, second_id)

    assert exc_info.value.details["current_status"] == "waitlisted"
    active = [a for a in await fetch_attendees(event_id) if a.user_id == second_id and a.is_active]
    assert len(active) == 1


async def test_unregister_promotes_waitlist_head(session, make_user, make_event, fetch_event):
    event = await make_event(capacity=1)
    users = [await make_user() for _ in range(3)]
    admission = AdmissionController(session)
    await register_users(admission, event.id, users)

    result = await admission.unregister(event.id, users[0].id)

    assert result.cancelled.status == AttendeeStatus.CANCELLED
    assert result.cancelled.cancelled_at is not None
    assert [a.user_id for a in result.promoted] == [users[1].id]
    assert (await fetch_event(event.id)).occupancy == 1

    second = await admission.get_active_registration(event.id, users[1].id)
    third = await admission.get_active_registration(event.id, users[2].id)
    assert second.status == AttendeeStatus.REGISTERED
    assert third.status == AttendeeStatus.WAITLISTED


async def test_leaving_waitlist_changes_nothing_else(session, make_user, make_event, fetch_event):
    event = await make_event(capacity=1)
    users = [await make_user() for _ in range(3)]
    admission = AdmissionController(session)
    await register_users(admission, event.id, users)

    result = await admission.unregister(event.id, users[1].id)

    assert result.promoted == []
    assert (await fetch_event(event.id)).occupancy == 1
    waitlist = await admission.list_attendees(event.id, AttendeeStatus.WAITLISTED)
    assert [a.user_id for a in waitlist] == [users[2].id]


async def test_unregister_twice_fails_without_side_effects(session, make_user, make_event, fetch_event):
    event = await make_event(capacity=1)
    event_id = event.id
    holder, waiting = await make_user(), await make_user()
    holder_id = holder.id
    admission = AdmissionController(session)
    await register_users(admission, event_id, [holder, waiting])

    await admission.unregister(event_id, holder_id)
    version_after_first = (await fetch_event(event_id)).version

    with pytest.raises(NotRegistered):
        await admission.unregister(event_id, holder_id)

    stored = await fetch_event(event_id)
    assert stored.occupancy == 1
    assert stored.version == version_after_first


async def test_unregister_without_registration(session, make_user, make_event):
    event = await make_event()
    user = await make_user()

    with pytest.raises(NotRegistered):
        await AdmissionController(session).unregister(event.id, user.id)


async def test_register_again_after_cancelling(session, make_user, make_event, fetch_attendees):
    event = await make_event(capacity=2)
    user = await make_user()
    admission = AdmissionController(session)

    first = await admission.register(event.id, user.id)
    await admission.unregister(event.id, user.id)
    second = await admission.register(event.id, user.id)

    assert second.id != first.id
    assert second.status == AttendeeStatus.REGISTERED
    statuses = [a.status for a in await fetch_attendees(event.id)]
    assert statuses == [AttendeeStatus.CANCELLED, AttendeeStatus.REGISTERED]


async def test_waitlist_is_first_come_first_served(session, make_user, make_event):
    event = await make_event(capacity=1)
    holder = await make_user()
    waiting = [await make_user() for _ in range(3)]
    admission = AdmissionController(session)
    await register_users(admission, event.id, [holder, *waiting])

    promoted_order = []
    current = holder
    for _ in waiting:
        result = await admission.unregister(event.id, current.id)
        promoted_order.extend(a.user_id for a in result.promoted)
        current = next(u for u in waiting if u.id == result.promoted[0].user_id)

    assert promoted_order == [u.id for u in waiting]


async def test_capacity_increase_promotes_in_order(session, organizer, make_user, make_event, fetch_event):
    event = await make_event(capacity=1)
    users = [await make_user() for _ in range(4)]
    admission = AdmissionController(session)
    await register_users(admission, event.id, users)

    updated = await admission.change_capacity(event.id, organizer, 3)

    assert updated.capacity == 3
    assert updated.occupancy == 3
    registered = await admission.list_attendees(event.id, AttendeeStatus.REGISTERED)
    waitlisted = await admission.list_attendees(event.id, AttendeeStatus.WAITLISTED)
    assert [a.user_id for a in registered] == [u.id for u in users[:3]]
    assert [a.user_id for a in waitlisted] == [users[3].id]
    assert (await fetch_event(event.id)).occupancy == 3


async def test_capacity_increase_beyond_waitlist(session, organizer, make_user, make_event):
    event = await make_event(capacity=1)
    users = [await make_user() for _ in range(2)]
    admission = AdmissionController(session)
    await register_users(admission, event.id, users)

    updated = await admission.change_capacity(event.id, organizer, 10)

    assert updated.occupancy == 2
    assert updated.available_spots == 8


async def test_capacity_below_occupancy_is_rejected(session, organizer, make_user, make_event, fetch_event):
    event = await make_event(capacity=3)
    event_id = event.id
    users = [await make_user() for _ in range(3)]
    admission = AdmissionController(session)
    await register_users(admission, event_id, users)

    with pytest.raises(CapacityBelowOccupancy):
        await admission.change_capacity(event_id, organizer, 2)

    stored = await fetch_event(event_id)
    assert stored.capacity == 3
    assert stored.occupancy == 3


async def test_capacity_must_be_positive(session, organizer, make_event):
    event = await make_event()

    with pytest.raises(ValidationError):
        await AdmissionController(session).change_capacity(event.id, organizer, 0)


async def test_capacity_change_requires_organizer(session, make_user, make_event):
    event = await make_event(capacity=1)
    event_id = event.id
    outsider = await make_user(UserRole.ORGANIZER)

    with pytest.raises(Unauthorized):
        await AdmissionController(session).change_capacity(event_id, outsider, 5)


@pytest.mark.parametrize("closed_status", [EventStatus.ONGOING, EventStatus.CANCELLED])
async def test_closed_event_promotes_nobody(
    session, organizer, make_user, make_event, fetch_event, fetch_attendees, closed_status
):
    event = await make_event(capacity=1)
    event_id = event.id
    users = [await make_user() for _ in range(3)]
    admission = AdmissionController(session)
    await register_users(admission, event_id, users)
    await LifecycleEngine(session).transition(event_id, organizer, closed_status)

    updated = await admission.change_capacity(event_id, organizer, 3)
    result = await admission.unregister(event_id, users[0].id)

    assert updated.capacity == 3
    assert result.promoted == []
    assert (await fetch_event(event_id)).occupancy == 0
    statuses = [a.status for a in await fetch_attendees(event_id)]
    assert statuses == [
        AttendeeStatus.CANCELLED,
        AttendeeStatus.WAITLISTED,
        AttendeeStatus.WAITLISTED,
    ]


async def test_occupancy_stays_within_bounds(session, make_user, make_event, fetch_event, fetch_attendees):
    event = await make_event(capacity=2)
    users = [await make_user() for _ in range(5)]
    admission = AdmissionController(session)

    await register_users(admission, event.id, users)
    for user in users[:3]:
        await admission.unregister(event.id, user.id)
        stored = await fetch_event(event.id)
        registered = [a for a in await fetch_attendees(event.id) if a.status == AttendeeStatus.REGISTERED]
        assert 0 <= stored.occupancy <= stored.capacity
        assert stored.occupancy == len(registered)


async def test_reconcile_repairs_drift_and_fills_seats(session, make_user, make_event, fetch_event):
    from sqlalchemy import update
    from gatherly_events.models import Attendee

    event = await make_event(capacity=2)
    users = [await make_user() for _ in range(3)]
    admission = AdmissionController(session)
    await register_users(admission, event.id, users)

    # Cancel one seat behind the controller's back
    await session.execute(
        update(Attendee)
        .where(Attendee.event_id == event.id, Attendee.user_id == users[0].id)
        .values(status=AttendeeStatus.CANCELLED)
    )
    await session.commit()

    result = await admission.reconcile_occupancy(event.id)

    assert result.recorded_occupancy == 2
    assert result.actual_occupancy == 1
    assert result.drifted
    assert [a.user_id for a in result.promoted] == [users[2].id]
    assert (await fetch_event(event.id)).occupancy == 2


async def test_reconcile_without_drift_is_a_no_op(session, make_user, make_event, fetch_event):
    event = await make_event(capacity=2)
    user = await make_user()
    admission = AdmissionController(session)
    await admission.register(event.id, user.id)
    version_before = (await fetch_event(event.id)).version

    result = await admission.reconcile_occupancy(event.id)

    assert not result.drifted
    assert result.promoted == []
    assert (await fetch_event(event.id)).version == version_before
