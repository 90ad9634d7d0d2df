import os

# Settings are read at import time; configure before importing the package.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./gatherly_test.db")
os.environ.setdefault("ENABLE_CACHE", "false")
os.environ.setdefault("ENABLE_DISTRIBUTED_LOCKS", "false")
os.environ.setdefault("ADMISSION_MAX_RETRY_ATTEMPTS", "10")
os.environ.setdefault("ADMISSION_RETRY_BASE_DELAY", "0.01")
os.environ.setdefault("ADMISSION_RETRY_MAX_DELAY", "0.1")
os.environ.setdefault("ENVIRONMENT", "testing")

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from gatherly_events.database import create_session_factory, get_db, session_scope
from gatherly_events.main import app
from gatherly_events.models import Attendee, Base, Event, EventStatus, User, UserRole
from gatherly_events.schemas.event import EventCreate
from gatherly_events.services.event_service import EventService
from gatherly_events.services.lifecycle_service import LifecycleEngine
from gatherly_events.utils.auth import create_access_token


# A file-backed database per test so concurrent sessions use separate connections
@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'gatherly.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(session):
    async def _make_user(role: UserRole = UserRole.USER, email: str | None = None) -> User:
        user = User(
            email=email or f"{uuid4().hex[:12]}@example.com",
            full_name="Test User",
            role=role,
            is_active=True,
        )
        session.add(user)
        await session.commit()
        return user

    return _make_user


@pytest.fixture
async def organizer(make_user) -> User:
    return await make_user(UserRole.ORGANIZER)


@pytest.fixture
def make_event(session, organizer):
    """Create an event owned by ``organizer`` and walk it to the requested status."""

    async def _make_event(
        capacity: int = 2,
        status: EventStatus = EventStatus.UPCOMING,
        owner: User | None = None,
    ) -> Event:
        owner = owner or organizer
        start = datetime.now(timezone.utc) + timedelta(days=7)
        initial = status if status in (EventStatus.DRAFT, EventStatus.UPCOMING) else EventStatus.UPCOMING
        event = await EventService(session).create_event(
            owner,
            EventCreate(
                title="Community meetup",
                description="Monthly meetup",
                location="Main hall",
                start_date=start,
                end_date=start + timedelta(hours=2),
                capacity=capacity,
                status=initial,
            ),
        )

        lifecycle = LifecycleEngine(session)
        if status in (EventStatus.ONGOING, EventStatus.COMPLETED):
            await lifecycle.transition(event.id, owner, EventStatus.ONGOING)
        if status == EventStatus.COMPLETED:
            await lifecycle.transition(event.id, owner, EventStatus.COMPLETED)
        if status == EventStatus.CANCELLED:
            await lifecycle.transition(event.id, owner, EventStatus.CANCELLED)
        return event

    return _make_event


@pytest.fixture
def fetch_event(session_factory):
    """Read an event through a fresh session."""

    async def _fetch_event(event_id) -> Event:
        async with session_factory() as fresh:
            result = await fresh.execute(select(Event).where(Event.id == event_id))
            return result.scalar_one()

    return _fetch_event


@pytest.fixture
def fetch_attendees(session_factory):
    """Read all attendee records of an event through a fresh session."""

    async def _fetch_attendees(event_id) -> list[Attendee]:
        async with session_factory() as fresh:
            result = await fresh.execute(
                select(Attendee)
                .where(Attendee.event_id == event_id)
                .order_by(Attendee.admission_seq)
            )
            return list(result.scalars().all())

    return _fetch_attendees


def auth_headers(user: User) -> dict[str, str]:
    token = create_access_token({"sub": str(user.id), "email": user.email})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_scope(session_factory) as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def headers_for():
    return auth_headers
