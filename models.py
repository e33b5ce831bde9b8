"""
Database Models
SQLAlchemy ORM models for CareAdherence
"""

from sqlalchemy import Column, Integer, String, Boolean, Float, DateTime, ForeignKey, Text, Date, Time, Enum, Index, UniqueConstraint, JSON
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from enum import Enum as PyEnum

from database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ==================== ENUMS ====================

class OwnerType(str, PyEnum):
    """Kind of prescribed obligation a template belongs to"""
    MEDICATION = "medication"
    VITAL = "vital"
    APPOINTMENT = "appointment"


class Frequency(str, PyEnum):
    """Recurrence frequency"""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class EventStatus(str, PyEnum):
    """Status of a single materialized occurrence"""
    PENDING = "pending"
    STARTED = "started"
    COMPLETED = "completed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    PRIOR = "prior"  # imported history awaiting reconciliation


class AppointmentOutcome(str, PyEnum):
    """Outcome recorded when an appointment occurrence is completed"""
    ATTENDED = "attended"
    NO_SHOW = "no_show"
    RESCHEDULED = "rescheduled"


class Trend(str, PyEnum):
    """Direction of a measured series across a window"""
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


# Allowed source states per transition
TERMINAL_STATUSES = (EventStatus.COMPLETED, EventStatus.CANCELLED)
OPEN_STATUSES = (EventStatus.PENDING, EventStatus.STARTED)
START_SOURCES = (EventStatus.PENDING,)
COMPLETE_SOURCES = (EventStatus.PENDING, EventStatus.STARTED, EventStatus.PRIOR)
CANCEL_SOURCES = (EventStatus.PENDING, EventStatus.STARTED, EventStatus.PRIOR)
EXPIRE_SOURCES = OPEN_STATUSES


# ==================== MODELS ====================

class VitalType(Base):
    """Measurable vital sign with its declared normal range"""
    __tablename__ = "vital_types"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    unit = Column(String(20))
    normal_min = Column(Float)
    normal_max = Column(Float)
    description = Column(Text)

    created_at = Column(DateTime, default=_utcnow)

    def is_normal(self, value: float) -> bool:
        if self.normal_min is not None and value < self.normal_min:
            return False
        if self.normal_max is not None and value > self.normal_max:
            return False
        return True


class RecurrenceTemplate(Base):
    """A prescribed recurring obligation (medication, vital or appointment)"""
    __tablename__ = "recurrence_templates"

    id = Column(Integer, primary_key=True, index=True)

    # Ownership
    owner_type = Column(Enum(OwnerType), nullable=False)
    owner_id = Column(Integer, nullable=False)
    patient_id = Column(Integer, nullable=False, index=True)
    title = Column(String(255))  # e.g. "Metformin 500mg", "Blood pressure"

    # Date range (inclusive, calendar dates)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)

    # Recurrence rule
    frequency = Column(Enum(Frequency), nullable=False)
    interval = Column(Integer, nullable=False, default=1)
    days_of_week = Column(JSON)  # ISO weekdays 1-7, weekly only
    time_of_day = Column(Time, nullable=False)
    timezone = Column(String(50), nullable=False, default="UTC")

    # Alerting / measurement
    critical = Column(Boolean, nullable=False, default=False)
    vital_type_id = Column(Integer, ForeignKey("vital_types.id"))

    # Resumable materialization
    last_materialized_through = Column(Date)

    # Soft retirement; templates are never deleted
    retired_at = Column(DateTime)

    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    # Relationships
    vital_type = relationship("VitalType")
    events = relationship("ScheduleEvent", back_populates="template")

    __table_args__ = (
        Index("ix_templates_patient_owner", "patient_id", "owner_type"),
    )

    @property
    def is_retired(self) -> bool:
        return self.retired_at is not None


class ScheduleEvent(Base):
    """One concrete, dated occurrence materialized from a template"""
    __tablename__ = "schedule_events"

    id = Column(Integer, primary_key=True, index=True)
    template_id = Column(Integer, ForeignKey("recurrence_templates.id"), nullable=False)

    # Copied from the template at insert time; never updated
    patient_id = Column(Integer, nullable=False)
    owner_type = Column(Enum(OwnerType), nullable=False)
    owner_id = Column(Integer, nullable=False)
    critical = Column(Boolean, nullable=False, default=False)

    # Timing (naive UTC)
    occurrence_date = Column(Date, nullable=False)
    scheduled_start = Column(DateTime, nullable=False)
    scheduled_end = Column(DateTime, nullable=False)

    # Lifecycle
    status = Column(Enum(EventStatus), nullable=False, default=EventStatus.PENDING)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)  # set iff status == completed
    expired_at = Column(DateTime)
    cancelled_at = Column(DateTime)
    cancel_reason = Column(Text)

    # Validated tagged union, see payloads.py
    completion_payload = Column(JSON)
    flagged = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    # Relationships
    template = relationship("RecurrenceTemplate", back_populates="events")

    __table_args__ = (
        UniqueConstraint("template_id", "occurrence_date", name="uq_event_template_date"),
        Index("ix_events_status_end", "status", "scheduled_end"),
        Index("ix_events_patient_date", "patient_id", "occurrence_date"),
        Index("ix_events_patient_owner_status", "patient_id", "owner_type", "status"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
