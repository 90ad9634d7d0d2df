"""
Celery tasks for admission maintenance.
"""

import asyncio
import logging
from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .celery_app import celery_app
from ..database import create_database_engine, create_session_factory
from ..services.admission_service import AdmissionController
from ..services.event_service import EventService
from ..utils.exceptions import ConcurrencyConflict

logger = logging.getLogger(__name__)


async def reconcile_open_events(session_factory: async_sessionmaker[AsyncSession]) -> Dict[str, Any]:
    """
    Recompute occupancy of every upcoming event and fill free seats.

    Each event is reconciled in its own session. An event still contended
    after the retries is skipped until the next run.
    """
    async with session_factory() as session:
        event_ids = await EventService(session).list_open_event_ids()

    summary = {"checked": 0, "repaired": 0, "promoted": 0, "overbooked": 0, "skipped": 0}

    for event_id in event_ids:
        async with session_factory() as session:
            try:
                outcome = await AdmissionController(session).reconcile_occupancy(event_id)
            except ConcurrencyConflict as e:
                logger.warning(f"Skipping reconciliation of event {event_id}: {e}")
                summary["skipped"] += 1
                continue

        summary["checked"] += 1
        if outcome.overbooked:
            summary["overbooked"] += 1
        elif outcome.drifted:
            summary["repaired"] += 1
        summary["promoted"] += len(outcome.promoted)

    logger.info(
        f"Occupancy reconciliation finished: {summary['checked']} checked, "
        f"{summary['repaired']} repaired, {summary['promoted']} promoted, "
        f"{summary['overbooked']} overbooked, "
        f"{summary['skipped']} skipped"
    )
    return summary


@celery_app.task(bind=True, name="reconcile_event_occupancy_task")
def reconcile_event_occupancy_task(self):
    """
    Periodic task repairing occupancy drift on events open for registration.

    Occupancy should always equal the number of registered attendees; a
    mismatch means a write bypassed admission control.
    """

    async def _reconcile():
        engine = create_database_engine()
        try:
            return await reconcile_open_events(create_session_factory(engine))
        finally:
            await engine.dispose()

    logger.info("Starting occupancy reconciliation task")

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(_reconcile())
    finally:
        loop.close()
