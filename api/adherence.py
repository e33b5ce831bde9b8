"""
Adherence API Router
Endpoints for adherence statistics, missed events and vital timelines
"""

from typing import Optional
from datetime import date, timedelta
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session

from api.deps import get_db, http_error, services
from api.schemas.adherence import (
    AdherenceStatsResponse,
    MissedEventsResponse,
    VitalTimelineResponse,
)
from config import settings
from exceptions import CareEngineError
from models import OwnerType
from tools.timeutils import utcnow


router = APIRouter(prefix="/adherence", tags=["adherence"])


def _resolve_window(
    window_start: Optional[date],
    window_end: Optional[date],
    days: int
):
    end = window_end or utcnow().date()
    start = window_start or end - timedelta(days=days - 1)
    if start > end:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"window_start {start} is after window_end {end}"
        )
    return start, end


@router.get("/{patient_id}/stats", response_model=AdherenceStatsResponse)
async def get_adherence_stats(
    patient_id: int,
    category: OwnerType = Query(..., description="medication, vital or appointment"),
    window_start: Optional[date] = Query(None),
    window_end: Optional[date] = Query(None, description="Defaults to today"),
    days: int = Query(30, ge=1, le=365, description="Window length when window_start is omitted"),
    db: Session = Depends(get_db)
):
    """
    Adherence snapshot for one category over a window
    """
    adherence_service = services.get_adherence_service()
    start, end = _resolve_window(window_start, window_end, days)
    try:
        snapshot = await adherence_service.get_stats(patient_id, category, start, end, db=db)
    except CareEngineError as e:
        raise http_error(e)

    return snapshot.to_dict()


@router.get("/{patient_id}/missed", response_model=MissedEventsResponse)
async def get_missed_events(
    patient_id: int,
    category: Optional[OwnerType] = Query(None, description="Restrict to one owner type"),
    window_start: Optional[date] = Query(None),
    window_end: Optional[date] = Query(None),
    limit: int = Query(settings.MISSED_EVENTS_LIMIT, ge=1, le=500, description="Cap per category"),
    db: Session = Depends(get_db)
):
    """
    Missed events grouped by medications, appointments and vitals
    """
    adherence_service = services.get_adherence_service()
    try:
        return await adherence_service.list_missed(
            patient_id,
            category=category,
            window_start=window_start,
            window_end=window_end,
            limit=limit,
            db=db
        )
    except CareEngineError as e:
        raise http_error(e)


@router.get("/vitals/{template_id}/timeline", response_model=VitalTimelineResponse)
async def get_vital_timeline(
    template_id: int,
    limit: int = Query(settings.VITAL_TIMELINE_LIMIT, ge=1, le=500),
    db: Session = Depends(get_db)
):
    """
    Recent readings of a vital template with summary statistics
    """
    adherence_service = services.get_adherence_service()
    try:
        return await adherence_service.get_vital_timeline(template_id, limit=limit, db=db)
    except CareEngineError as e:
        raise http_error(e)
