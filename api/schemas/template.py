"""
Template Schemas
Pydantic models for recurrence template API requests and responses
"""

from typing import Optional, List, Dict
from datetime import datetime, date, time
from pydantic import BaseModel, Field, ConfigDict

from models import Frequency, OwnerType


# ==================== REQUEST SCHEMAS ====================

class VitalTypeCreate(BaseModel):
    """Schema for registering a vital type"""
    name: str = Field(..., min_length=1, max_length=100)
    unit: Optional[str] = Field(None, max_length=20)
    normal_min: Optional[float] = None
    normal_max: Optional[float] = None
    description: Optional[str] = None


class TemplateCreate(BaseModel):
    """Schema for creating a recurrence template"""
    patient_id: int
    owner_type: OwnerType
    owner_id: int
    title: Optional[str] = Field(None, max_length=255)
    start_date: date
    end_date: date
    frequency: Frequency
    # Recurrence shape is checked by the service so malformed rules map to 400
    interval: int = 1
    days_of_week: Optional[List[int]] = Field(None, description="ISO weekdays, 1=Mon .. 7=Sun")
    time_of_day: time
    timezone: Optional[str] = Field(None, max_length=50, examples=["Europe/Berlin"])
    critical: bool = False
    vital_type_id: Optional[int] = None
    materialize_through: Optional[date] = Field(
        None, description="Initial materialization horizon; defaults to the configured horizon"
    )


class MaterializeRequest(BaseModel):
    """Schema for materializing a template"""
    through_date: date


class MaterializeDueRequest(BaseModel):
    """Schema for the batch materialization run"""
    through_date: date


class TemplateExtend(BaseModel):
    """Schema for extending a template"""
    end_date: date


class TemplateReschedule(BaseModel):
    """Schema for moving a template to a new time of day"""
    time_of_day: time
    effective_from: Optional[date] = None


class TemplateRetire(BaseModel):
    """Schema for retiring a template"""
    as_of: Optional[date] = None


class PriorEventsImport(BaseModel):
    """Schema for importing historical occurrences"""
    dates: List[date] = Field(..., min_length=1)


# ==================== RESPONSE SCHEMAS ====================

class VitalTypeResponse(BaseModel):
    """Schema for vital type response"""
    id: int
    name: str
    unit: Optional[str] = None
    normal_min: Optional[float] = None
    normal_max: Optional[float] = None
    description: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class TemplateResponse(BaseModel):
    """Schema for template response"""
    id: int
    patient_id: int
    owner_type: OwnerType
    owner_id: int
    title: Optional[str] = None
    start_date: date
    end_date: date
    frequency: Frequency
    interval: int
    days_of_week: Optional[List[int]] = None
    time_of_day: time
    timezone: str
    critical: bool
    vital_type_id: Optional[int] = None
    last_materialized_through: Optional[date] = None
    retired_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TemplateCreateResponse(BaseModel):
    """Created template plus its initially materialized events"""
    template: TemplateResponse
    event_ids: List[int]
    events_created: int


class MaterializeResponse(BaseModel):
    """Schema for materialization result"""
    template_id: int
    through_date: date
    event_ids: List[int]
    events_created: int


class MaterializeDueResponse(BaseModel):
    """Schema for the batch materialization summary"""
    through_date: date
    templates_processed: int
    events_created: int
    created_by_template: Dict[int, int]
    failed: Dict[int, str]


class RescheduleResponse(BaseModel):
    """Schema for reschedule result"""
    template_id: int
    time_of_day: str
    events_rescheduled: int


class RetireResponse(BaseModel):
    """Schema for retire result"""
    template_id: int
    retired_at: Optional[datetime] = None
    events_cancelled: int


class TemplateProgress(BaseModel):
    """Total and remaining occurrences of a template"""
    template_id: int
    start_date: date
    end_date: date
    total: int
    remaining: int
    last_materialized_through: Optional[date] = None
    retired: bool


class PriorEventsResponse(BaseModel):
    """Schema for historical import result"""
    template_id: int
    event_ids: List[int]
    events_imported: int
