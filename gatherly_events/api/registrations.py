"""
Registration API endpoints: register, unregister and the caller's status.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models import User
from ..schemas.attendee import AttendeeResponse, MyStatusResponse
from ..schemas.common import ErrorResponse
from ..services.admission_service import AdmissionController
from ..services.event_service import EventService
from ..utils.dependencies import get_current_user


router = APIRouter(prefix="/events", tags=["registrations"])


def get_admission_controller(db: AsyncSession = Depends(get_db)) -> AdmissionController:
    """Dependency to get admission controller instance."""
    return AdmissionController(db)


def get_event_service(db: AsyncSession = Depends(get_db)) -> EventService:
    """Dependency to get event service instance."""
    return EventService(db)


REGISTER_RESPONSES = {
    409: {"model": ErrorResponse, "description": "Already registered or concurrent update"},
    422: {"model": ErrorResponse, "description": "Event not open for registration"},
}

UNREGISTER_RESPONSES = {
    404: {"model": ErrorResponse, "description": "No active registration"},
}


@router.post(
    "/{event_id}:register",
    response_model=AttendeeResponse,
    status_code=status.HTTP_201_CREATED,
    responses=REGISTER_RESPONSES
)
async def register(
    event_id: UUID,
    current_user: User = Depends(get_current_user),
    admission: AdmissionController = Depends(get_admission_controller)
):
    """
    Register the caller for an event.

    The record is registered while seats remain, otherwise waitlisted.
    """
    return await admission.register(event_id, current_user.id)


@router.post(
    "/{event_id}/register",
    response_model=AttendeeResponse,
    status_code=status.HTTP_201_CREATED,
    responses=REGISTER_RESPONSES,
    include_in_schema=False
)
async def register_alias(
    event_id: UUID,
    current_user: User = Depends(get_current_user),
    admission: AdmissionController = Depends(get_admission_controller)
):
    return await admission.register(event_id, current_user.id)


@router.delete(
    "/{event_id}:register",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    responses=UNREGISTER_RESPONSES
)
async def unregister(
    event_id: UUID,
    current_user: User = Depends(get_current_user),
    admission: AdmissionController = Depends(get_admission_controller)
):
    """
    Cancel the caller's registration or leave the waitlist.

    A freed seat goes to the head of the waitlist.
    """
    await admission.unregister(event_id, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete(
    "/{event_id}/unregister",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    responses=UNREGISTER_RESPONSES,
    include_in_schema=False
)
async def unregister_alias(
    event_id: UUID,
    current_user: User = Depends(get_current_user),
    admission: AdmissionController = Depends(get_admission_controller)
):
    await admission.unregister(event_id, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{event_id}/my-status", response_model=MyStatusResponse)
async def get_my_status(
    event_id: UUID,
    current_user: User = Depends(get_current_user),
    event_service: EventService = Depends(get_event_service)
):
    """The caller's active registration, with queue position while waitlisted."""
    record, position = await event_service.get_my_status(event_id, current_user.id)
    return MyStatusResponse(
        **AttendeeResponse.model_validate(record).model_dump(),
        position=position
    )
