"""
Adherence Schemas
Pydantic models for adherence statistics and missed event responses
"""

from typing import Optional, List
from datetime import datetime, date
from pydantic import BaseModel

from models import OwnerType, Trend


# ==================== RESPONSE SCHEMAS ====================

class AdherenceStatsResponse(BaseModel):
    """Adherence snapshot for one category over a window"""
    patient_id: int
    category: OwnerType
    window_start: date
    window_end: date
    total_count: int
    completed_count: int
    expired_count: int
    cancelled_count: int
    pending_count: int
    completion_rate: float
    average_value: Optional[float] = None
    trend: Trend


class MissedEvent(BaseModel):
    """Schema for one missed (expired) event"""
    event_id: int
    template_id: int
    owner_id: int
    title: Optional[str] = None
    critical: bool
    occurrence_date: date
    scheduled_start: datetime
    expired_at: Optional[datetime] = None


class MissedEventCounts(BaseModel):
    """Uncapped missed counts per category"""
    medications: int
    appointments: int
    vitals: int
    total_missed: int


class MissedEventsResponse(BaseModel):
    """Missed events grouped by owner type"""
    medications: List[MissedEvent]
    appointments: List[MissedEvent]
    vitals: List[MissedEvent]
    counts: MissedEventCounts


class VitalTypeInfo(BaseModel):
    """Vital type summary"""
    id: int
    name: str
    unit: Optional[str] = None
    normal_min: Optional[float] = None
    normal_max: Optional[float] = None


class VitalReading(BaseModel):
    """Schema for one completed vital reading"""
    event_id: int
    occurrence_date: date
    completed_at: Optional[datetime] = None
    value: float
    unit: Optional[str] = None
    flagged: bool


class VitalStatistics(BaseModel):
    """Summary statistics of a vital timeline"""
    count: int
    average: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    flagged_count: int


class VitalTimelineResponse(BaseModel):
    """Recent readings of a vital template"""
    template_id: int
    title: Optional[str] = None
    vital_type: Optional[VitalTypeInfo] = None
    readings: List[VitalReading]
    statistics: VitalStatistics
