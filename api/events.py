"""
Events API Router
Endpoints for schedule event lifecycle transitions
"""

from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session

from api.deps import get_db, http_error, services
from api.schemas.event import (
    EventComplete,
    EventCancel,
    EventResponse,
    UpcomingEventsResponse,
)
from config import settings
from exceptions import CareEngineError


router = APIRouter(prefix="/events", tags=["events"])


@router.get("/upcoming/{patient_id}", response_model=UpcomingEventsResponse)
async def get_upcoming_events(
    patient_id: int,
    days: int = Query(7, ge=1, le=90, description="Look-ahead in days"),
    limit: int = Query(settings.UPCOMING_EVENTS_LIMIT, ge=1, le=200),
    db: Session = Depends(get_db)
):
    """
    Open events for a patient starting within the next `days`
    """
    adherence_service = services.get_adherence_service()
    try:
        events = await adherence_service.get_upcoming_events(
            patient_id, days=days, limit=limit, db=db
        )
    except CareEngineError as e:
        raise http_error(e)

    return {
        "patient_id": patient_id,
        "days": days,
        "events": events,
        "total": len(events)
    }


@router.get("/{event_id}", response_model=EventResponse)
async def get_event(
    event_id: int,
    db: Session = Depends(get_db)
):
    """
    Get event by ID
    """
    lifecycle_service = services.get_lifecycle_service()
    event = await lifecycle_service.get_event(event_id, db=db)

    if not event:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Event {event_id} not found"
        )

    return event


@router.post("/{event_id}/start", response_model=EventResponse)
async def start_event(
    event_id: int,
    db: Session = Depends(get_db)
):
    """
    Check in to a pending event

    Returns 409 when the event is no longer pending.
    """
    lifecycle_service = services.get_lifecycle_service()
    try:
        return await lifecycle_service.start_event(event_id, db=db)
    except CareEngineError as e:
        raise http_error(e)


@router.post("/{event_id}/complete", response_model=EventResponse)
async def complete_event(
    event_id: int,
    request: EventComplete,
    db: Session = Depends(get_db)
):
    """
    Complete an event with its medication / vital / appointment payload

    Returns 400 for a payload that does not fit the event, 409 when the
    event is already completed, cancelled or expired.
    """
    lifecycle_service = services.get_lifecycle_service()
    try:
        return await lifecycle_service.complete_event(event_id, request.payload, db=db)
    except CareEngineError as e:
        raise http_error(e)


@router.post("/{event_id}/cancel", response_model=EventResponse)
async def cancel_event(
    event_id: int,
    request: EventCancel,
    db: Session = Depends(get_db)
):
    """
    Cancel an open event
    """
    lifecycle_service = services.get_lifecycle_service()
    try:
        return await lifecycle_service.cancel_event(event_id, reason=request.reason, db=db)
    except CareEngineError as e:
        raise http_error(e)


@router.post("/{event_id}/expire", response_model=EventResponse)
async def expire_prior_event(
    event_id: int,
    db: Session = Depends(get_db)
):
    """
    Reconcile an imported prior event as missed
    """
    lifecycle_service = services.get_lifecycle_service()
    try:
        return await lifecycle_service.expire_prior_event(event_id, db=db)
    except CareEngineError as e:
        raise http_error(e)
