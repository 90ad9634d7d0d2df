"""
Celery application for admission maintenance jobs.

Run a worker with the beat scheduler embedded:
    celery -A gatherly_events.tasks.celery_app:celery_app worker --beat
"""

from celery import Celery
from ..config import get_settings

settings = get_settings()

celery_app = Celery(
    "gatherly_events",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["gatherly_events.tasks.admission_tasks"]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    result_expires=24 * 60 * 60,
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    # A reconciliation pass touches every open event; cap it well below the beat interval
    task_time_limit=10 * 60,
    task_soft_time_limit=8 * 60,
    task_default_queue="admission",
    worker_prefetch_multiplier=1,
)

celery_app.conf.beat_schedule = {
    "reconcile-event-occupancy": {
        "task": "reconcile_event_occupancy_task",
        "schedule": settings.occupancy_reconcile_interval_seconds,
        # A run that could not start before the next one is due is dropped
        "options": {"expires": settings.occupancy_reconcile_interval_seconds},
    },
}
