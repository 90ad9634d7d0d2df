from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm.exc import StaleDataError

from gatherly_events.config import get_settings
from gatherly_events.models import EventStatus, UserRole
from gatherly_events.services import admission_service

API = "/api/v1/events"


def event_payload(**overrides):
    start = datetime.now(timezone.utc) + timedelta(days=3)
    payload = {
        "title": "Launch party",
        "description": "Product launch",
        "location": "Rooftop",
        "start_date": start.isoformat(),
        "end_date": (start + timedelta(hours=3)).isoformat(),
        "capacity": 2,
        "status": "upcoming",
    }
    payload.update(overrides)
    return payload


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


async def test_missing_token_is_rejected(client, make_event):
    event = await make_event()

    response = await client.post(f"{API}/{event.id}:register")

    assert response.status_code == 401


async def test_invalid_token_is_rejected(client, make_event):
    event = await make_event()

    response = await client.post(
        f"{API}/{event.id}:register",
        headers={"Authorization": "Bearer not-a-token"},
    )

    assert response.status_code == 401


async def test_organizer_creates_event(client, organizer, headers_for):
    response = await client.post(API, json=event_payload(), headers=headers_for(organizer))

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "upcoming"
    assert body["occupancy"] == 0
    assert body["organizer_ids"] == [str(organizer.id)]


async def test_plain_user_cannot_create_event(client, make_user, headers_for):
    user = await make_user()

    response = await client.post(API, json=event_payload(), headers=headers_for(user))

    assert response.status_code == 403
    assert response.json()["error"]["error_code"] == "FORBIDDEN"


async def test_event_cannot_start_ongoing(client, organizer, headers_for):
    response = await client.post(
        API, json=event_payload(status="ongoing"), headers=headers_for(organizer)
    )

    assert response.status_code == 422
    assert response.json()["error"]["error_code"] == "VALIDATION_ERROR"


async def test_list_events_filters_by_status(client, organizer, make_event, headers_for):
    await make_event(status=EventStatus.DRAFT)
    upcoming = await make_event()

    response = await client.get(API, params={"status": "upcoming"}, headers=headers_for(organizer))

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    assert body["events"][0]["id"] == str(upcoming.id)


async def test_unknown_event_is_404(client, organizer, headers_for):
    response = await client.get(
        f"{API}/00000000-0000-0000-0000-000000000000", headers=headers_for(organizer)
    )

    assert response.status_code == 404
    assert response.json()["error"]["error_code"] == "NOT_FOUND"


async def test_register_then_duplicate(client, make_user, make_event, headers_for):
    event = await make_event(capacity=1)
    user = await make_user()

    first = await client.post(f"{API}/{event.id}:register", headers=headers_for(user))
    second = await client.post(f"{API}/{event.id}:register", headers=headers_for(user))

    assert first.status_code == 201
    assert first.json()["status"] == "registered"
    assert second.status_code == 409
    assert second.json()["error"]["error_code"] == "ALREADY_REGISTERED"


async def test_register_for_draft_event(client, make_user, make_event, headers_for):
    event = await make_event(status=EventStatus.DRAFT)
    user = await make_user()

    response = await client.post(f"{API}/{event.id}:register", headers=headers_for(user))

    assert response.status_code == 422
    assert response.json()["error"]["error_code"] == "EVENT_NOT_OPEN"


async def test_full_event_waitlists(client, make_user, make_event, headers_for):
    event = await make_event(capacity=1)
    first, second = await make_user(), await make_user()

    await client.post(f"{API}/{event.id}:register", headers=headers_for(first))
    response = await client.post(f"{API}/{event.id}:register", headers=headers_for(second))

    assert response.status_code == 201
    assert response.json()["status"] == "waitlisted"


async def test_unregister_then_again(client, make_user, make_event, headers_for):
    event = await make_event()
    user = await make_user()
    await client.post(f"{API}/{event.id}:register", headers=headers_for(user))

    first = await client.delete(f"{API}/{event.id}:register", headers=headers_for(user))
    second = await client.delete(f"{API}/{event.id}:register", headers=headers_for(user))

    assert first.status_code == 204
    assert second.status_code == 404
    assert second.json()["error"]["error_code"] == "NOT_REGISTERED"


async def test_path_style_aliases(client, make_user, make_event, headers_for):
    event = await make_event()
    user = await make_user()

    registered = await client.post(f"{API}/{event.id}/register", headers=headers_for(user))
    unregistered = await client.delete(f"{API}/{event.id}/unregister", headers=headers_for(user))

    assert registered.status_code == 201
    assert unregistered.status_code == 204


async def test_my_status_reports_waitlist_position(client, make_user, make_event, headers_for):
    event = await make_event(capacity=1)
    users = [await make_user() for _ in range(3)]
    for user in users:
        await client.post(f"{API}/{event.id}:register", headers=headers_for(user))

    holder = await client.get(f"{API}/{event.id}/my-status", headers=headers_for(users[0]))
    last = await client.get(f"{API}/{event.id}/my-status", headers=headers_for(users[2]))

    assert holder.json()["status"] == "registered"
    assert holder.json()["position"] is None
    assert last.json()["status"] == "waitlisted"
    assert last.json()["position"] == 2


async def test_my_status_without_registration(client, make_user, make_event, headers_for):
    event = await make_event()
    user = await make_user()

    response = await client.get(f"{API}/{event.id}/my-status", headers=headers_for(user))

    assert response.status_code == 404


async def test_transition_rules(client, organizer, make_user, make_event, headers_for):
    event = await make_event(status=EventStatus.DRAFT)
    outsider = await make_user(UserRole.ORGANIZER)
    url = f"{API}/{event.id}:transition"

    denied = await client.post(url, json={"target_status": "upcoming"}, headers=headers_for(outsider))
    invalid = await client.post(url, json={"target_status": "completed"}, headers=headers_for(organizer))
    allowed = await client.post(url, json={"target_status": "upcoming"}, headers=headers_for(organizer))

    assert denied.status_code == 401
    assert denied.json()["error"]["error_code"] == "UNAUTHORIZED"
    assert invalid.status_code == 409
    assert invalid.json()["error"]["error_code"] == "INVALID_TRANSITION"
    assert allowed.status_code == 200
    assert allowed.json()["status"] == "upcoming"


async def test_transition_options(client, organizer, make_event, headers_for):
    event = await make_event()

    response = await client.get(f"{API}/{event.id}/transitions", headers=headers_for(organizer))

    assert response.json() == {
        "event_id": str(event.id),
        "current_status": "upcoming",
        "allowed_targets": ["ongoing", "cancelled"],
        "is_open_for_registration": True,
    }


async def test_capacity_update_below_occupancy(client, organizer, make_user, make_event, headers_for):
    event = await make_event(capacity=2)
    for user in [await make_user(), await make_user()]:
        await client.post(f"{API}/{event.id}:register", headers=headers_for(user))

    response = await client.put(
        f"{API}/{event.id}", json={"capacity": 1}, headers=headers_for(organizer)
    )

    assert response.status_code == 409
    assert response.json()["error"]["error_code"] == "CAPACITY_BELOW_OCCUPANCY"


async def test_capacity_update_promotes_waitlist(client, organizer, make_user, make_event, headers_for):
    event = await make_event(capacity=1)
    users = [await make_user() for _ in range(2)]
    for user in users:
        await client.post(f"{API}/{event.id}:register", headers=headers_for(user))

    response = await client.put(
        f"{API}/{event.id}", json={"capacity": 2, "title": "Bigger launch"}, headers=headers_for(organizer)
    )

    assert response.status_code == 200
    body = response.json()
    assert body["title"] == "Bigger launch"
    assert body["capacity"] == 2
    assert body["occupancy"] == 2
    status = await client.get(f"{API}/{event.id}/my-status", headers=headers_for(users[1]))
    assert status.json()["status"] == "registered"


async def test_rejected_update_changes_nothing(client, organizer, make_user, make_event, headers_for):
    event = await make_event(capacity=1)
    users = [await make_user() for _ in range(2)]
    for user in users:
        await client.post(f"{API}/{event.id}:register", headers=headers_for(user))
    before = (await client.get(f"{API}/{event.id}", headers=headers_for(organizer))).json()

    response = await client.put(
        f"{API}/{event.id}",
        json={"title": "Renamed", "capacity": 2, "status": "completed"},
        headers=headers_for(organizer)
    )

    assert response.status_code == 409
    assert response.json()["error"]["error_code"] == "INVALID_TRANSITION"

    stored = (await client.get(f"{API}/{event.id}", headers=headers_for(organizer))).json()
    assert stored["title"] == "Community meetup"
    assert stored["capacity"] == 1
    assert stored["occupancy"] == 1
    assert stored["status"] == "upcoming"
    assert stored["version"] == before["version"]
    status = await client.get(f"{API}/{event.id}/my-status", headers=headers_for(users[1]))
    assert status.json()["status"] == "waitlisted"


async def test_update_applies_status_and_capacity_together(
    client, organizer, make_user, make_event, headers_for
):
    event = await make_event(capacity=1)
    users = [await make_user() for _ in range(2)]
    for user in users:
        await client.post(f"{API}/{event.id}:register", headers=headers_for(user))

    response = await client.put(
        f"{API}/{event.id}",
        json={"capacity": 2, "status": "cancelled"},
        headers=headers_for(organizer)
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "cancelled"
    assert body["capacity"] == 2
    assert body["occupancy"] == 1
    status = await client.get(f"{API}/{event.id}/my-status", headers=headers_for(users[1]))
    assert status.json()["status"] == "waitlisted"


async def test_attendee_and_waitlist_listing(client, organizer, make_user, make_event, headers_for):
    event = await make_event(capacity=1)
    users = [await make_user() for _ in range(3)]
    for user in users:
        await client.post(f"{API}/{event.id}:register", headers=headers_for(user))

    attendees = await client.get(f"{API}/{event.id}/attendees", headers=headers_for(organizer))
    waitlist = await client.get(f"{API}/{event.id}/waitlist", headers=headers_for(organizer))
    forbidden = await client.get(f"{API}/{event.id}/waitlist", headers=headers_for(users[0]))

    assert attendees.json()["total"] == 1
    assert attendees.json()["attendees"][0]["user_id"] == str(users[0].id)
    entries = waitlist.json()["entries"]
    assert [(e["position"], e["user_id"]) for e in entries] == [
        (1, str(users[1].id)),
        (2, str(users[2].id)),
    ]
    assert forbidden.status_code == 401


async def test_event_stats(client, organizer, make_user, make_event, headers_for):
    event = await make_event(capacity=1)
    users = [await make_user() for _ in range(2)]
    for user in users:
        await client.post(f"{API}/{event.id}:register", headers=headers_for(user))

    response = await client.get(f"{API}/{event.id}/stats", headers=headers_for(organizer))

    assert response.status_code == 200
    body = response.json()
    assert body["total_attendees"] == 1
    assert body["waitlisted_attendees"] == 1
    assert body["available_spots"] == 0
    assert body["capacity_usage_percentage"] == 100.0


async def test_organizer_team_management(client, organizer, make_user, make_event, headers_for):
    event = await make_event()
    colleague = await make_user(UserRole.ORGANIZER)
    base = f"{API}/{event.id}/organizers"

    added = await client.post(base, json={"email": colleague.email}, headers=headers_for(organizer))
    assert added.status_code == 200
    assert str(colleague.id) in added.json()["organizer_ids"]

    # The new organizer can now manage the event
    moved = await client.post(
        f"{API}/{event.id}:transition",
        json={"target_status": "ongoing"},
        headers=headers_for(colleague),
    )
    assert moved.status_code == 200

    removed = await client.delete(f"{base}/{organizer.id}", headers=headers_for(colleague))
    assert removed.json()["organizer_ids"] == [str(colleague.id)]

    last = await client.delete(f"{base}/{colleague.id}", headers=headers_for(colleague))
    assert last.status_code == 422


async def test_organizer_add_needs_one_identifier(client, organizer, make_event, headers_for):
    event = await make_event()

    response = await client.post(
        f"{API}/{event.id}/organizers", json={}, headers=headers_for(organizer)
    )

    assert response.status_code == 422


async def test_exhausted_conflict_retries_surface_as_409(
    client, make_user, make_event, headers_for, monkeypatch
):
    event = await make_event()
    user = await make_user()
    attempts = []

    async def stale_read(session, event_id):
        attempts.append(event_id)
        raise StaleDataError("UPDATE statement on table 'events' expected to update 1 row(s); 0 were matched.")

    monkeypatch.setattr(admission_service, "get_event_for_update", stale_read)

    response = await client.post(f"{API}/{event.id}:register", headers=headers_for(user))

    assert response.status_code == 409
    assert response.headers["Retry-After"] == "1"
    assert response.json()["error"]["error_code"] == "CONCURRENCY_CONFLICT"
    assert len(attempts) == get_settings().admission_max_retry_attempts


@pytest.mark.parametrize("path", ["", "/00000000-0000-0000-0000-000000000000/my-status"])
async def test_error_responses_carry_an_error_id(client, organizer, headers_for, path):
    response = await client.get(f"{API}{path}", params={"page": 0}, headers=headers_for(organizer))

    assert response.status_code in (404, 422)
    assert response.json()["error_id"]
