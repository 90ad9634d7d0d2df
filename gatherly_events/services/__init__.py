"""Business logic services for the Gatherly events service."""

from .lifecycle_service import LifecycleEngine
from .admission_service import AdmissionController
from .event_service import EventService

__all__ = ["LifecycleEngine", "AdmissionController", "EventService"]
