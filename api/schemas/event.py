"""
Event Schemas
Pydantic models for schedule event API requests and responses
"""

from typing import Optional, List, Dict, Any
from datetime import datetime, date
from pydantic import BaseModel, Field, ConfigDict

from models import EventStatus, OwnerType


# ==================== REQUEST SCHEMAS ====================

class EventComplete(BaseModel):
    """
    Schema for completing an event

    `payload` is validated against the event's owner type by the service:
    medication {"taken", "taken_at"?}, vital {"value", "unit"},
    appointment {"outcome"}.
    """
    payload: Dict[str, Any]


class EventCancel(BaseModel):
    """Schema for cancelling an event"""
    reason: Optional[str] = Field(None, max_length=500)


# ==================== RESPONSE SCHEMAS ====================

class EventResponse(BaseModel):
    """Schema for event response"""
    id: int
    template_id: int
    patient_id: int
    owner_type: OwnerType
    owner_id: int
    critical: bool
    occurrence_date: date
    scheduled_start: datetime
    scheduled_end: datetime
    status: EventStatus
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    completion_payload: Optional[Dict[str, Any]] = None
    flagged: bool = False

    model_config = ConfigDict(from_attributes=True)


class UpcomingEvent(BaseModel):
    """Open event shown in the upcoming list"""
    event_id: int
    template_id: int
    owner_type: OwnerType
    owner_id: int
    title: Optional[str] = None
    status: EventStatus
    critical: bool
    occurrence_date: date
    scheduled_start: datetime
    scheduled_end: datetime


class UpcomingEventsResponse(BaseModel):
    """Schema for upcoming events list"""
    patient_id: int
    days: int
    events: List[UpcomingEvent]
    total: int
