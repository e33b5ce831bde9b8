"""
Adherence Service
Read-only aggregation of event outcomes: stats, missed events, timelines
"""

import logging
from typing import Callable, Dict, List, Optional, Any, Tuple, TypeVar
from dataclasses import dataclass, asdict
from datetime import datetime, date, timedelta
from sqlalchemy.orm import Session
from sqlalchemy import and_, func, desc
from sqlalchemy.exc import SQLAlchemyError

from config import settings
from database import get_db_context
import models
from models import EventStatus, OwnerType, Trend
from exceptions import AggregationError
from services.template_service import get_template_or_raise
from tools.timeutils import to_naive_utc, utcnow


logger = logging.getLogger(__name__)

T = TypeVar("T")

# list_missed groups events under these keys
CATEGORY_KEYS = {
    OwnerType.MEDICATION: "medications",
    OwnerType.APPOINTMENT: "appointments",
    OwnerType.VITAL: "vitals",
}


@dataclass
class AdherenceSnapshot:
    """Derived adherence figures for one patient, category and window"""
    patient_id: int
    category: OwnerType
    window_start: date
    window_end: date
    total_count: int = 0
    completed_count: int = 0
    expired_count: int = 0
    cancelled_count: int = 0
    pending_count: int = 0
    completion_rate: float = 0.0
    average_value: Optional[float] = None
    trend: Trend = Trend.STABLE

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["category"] = self.category.value
        data["window_start"] = self.window_start.isoformat()
        data["window_end"] = self.window_end.isoformat()
        data["trend"] = self.trend.value
        return data


def completion_rate(completed: int, expired: int, cancelled: int) -> float:
    """completed / (completed + expired + cancelled), 0.0 when nothing applies"""
    applicable = completed + expired + cancelled
    if applicable == 0:
        return 0.0
    return completed / applicable


def compare_halves(
    first: Optional[float],
    second: Optional[float],
    tolerance: float
) -> Trend:
    """
    up / down when the second half moves beyond `tolerance` relative to the
    first-half mean; a zero first-half mean compares absolutely.
    """
    if first is None or second is None:
        return Trend.STABLE

    change = second - first
    if first != 0:
        change = change / abs(first)

    if change > tolerance:
        return Trend.UP
    if change < -tolerance:
        return Trend.DOWN
    return Trend.STABLE


def split_window(window_start: date, window_end: date) -> date:
    """First day of the second half of [window_start, window_end]"""
    days = (window_end - window_start).days + 1
    return window_start + timedelta(days=days // 2)


def _mean(values: List[float]) -> Optional[float]:
    if not values:
        return None
    return sum(values) / len(values)


def _payload_value(payload: Optional[Dict[str, Any]]) -> Optional[float]:
    if not payload or payload.get("value") is None:
        return None
    try:
        return float(payload["value"])
    except (TypeError, ValueError):
        return None


class AdherenceService:
    """
    Service for adherence tracking and analysis

    Never mutates events; every query here is safe alongside the
    lifecycle service and the sweeper.
    """

    def _read(self, what: str, op: Callable[[Session], T], db: Optional[Session]) -> T:
        try:
            if db:
                return op(db)
            with get_db_context() as session:
                return op(session)
        except SQLAlchemyError as e:
            logger.exception(f"Storage error while computing {what}")
            raise AggregationError(f"Failed to compute {what}: {e}") from e

    def _status_counts(
        self,
        session: Session,
        patient_id: int,
        category: OwnerType,
        window_start: date,
        window_end: date
    ) -> Dict[EventStatus, int]:
        rows = session.query(
            models.ScheduleEvent.status,
            func.count(models.ScheduleEvent.id)
        ).filter(
            and_(
                models.ScheduleEvent.patient_id == patient_id,
                models.ScheduleEvent.owner_type == category,
                models.ScheduleEvent.occurrence_date >= window_start,
                models.ScheduleEvent.occurrence_date <= window_end
            )
        ).group_by(models.ScheduleEvent.status).all()
        return {EventStatus(status): count for status, count in rows}

    def _vital_readings(
        self,
        session: Session,
        patient_id: int,
        window_start: date,
        window_end: date
    ) -> List[Tuple[date, float]]:
        rows = session.query(
            models.ScheduleEvent.occurrence_date,
            models.ScheduleEvent.completion_payload
        ).filter(
            and_(
                models.ScheduleEvent.patient_id == patient_id,
                models.ScheduleEvent.owner_type == OwnerType.VITAL,
                models.ScheduleEvent.status == EventStatus.COMPLETED,
                models.ScheduleEvent.occurrence_date >= window_start,
                models.ScheduleEvent.occurrence_date <= window_end
            )
        ).all()

        readings = []
        for occurrence_date, payload in rows:
            value = _payload_value(payload)
            if value is not None:
                readings.append((occurrence_date, value))
        return readings

    async def get_stats(
        self,
        patient_id: int,
        category: OwnerType,
        window_start: date,
        window_end: date,
        db: Optional[Session] = None
    ) -> AdherenceSnapshot:
        """
        Calculate adherence for one category over a window of occurrence dates

        Args:
            patient_id: Patient ID
            category: medication, vital or appointment
            window_start: First occurrence date (inclusive)
            window_end: Last occurrence date (inclusive)
            db: Database session

        Returns:
            AdherenceSnapshot; completion_rate is 0.0 for an empty window

        Raises:
            AggregationError: storage failure while reading
        """
        owner = OwnerType(category)
        tolerance = settings.TREND_TOLERANCE

        def _calculate(session: Session) -> AdherenceSnapshot:
            snapshot = AdherenceSnapshot(
                patient_id=patient_id,
                category=owner,
                window_start=window_start,
                window_end=window_end
            )
            if window_end < window_start:
                return snapshot

            counts = self._status_counts(session, patient_id, owner, window_start, window_end)
            snapshot.total_count = sum(counts.values())
            snapshot.completed_count = counts.get(EventStatus.COMPLETED, 0)
            snapshot.expired_count = counts.get(EventStatus.EXPIRED, 0)
            snapshot.cancelled_count = counts.get(EventStatus.CANCELLED, 0)
            snapshot.pending_count = (
                counts.get(EventStatus.PENDING, 0) + counts.get(EventStatus.STARTED, 0)
            )
            snapshot.completion_rate = completion_rate(
                snapshot.completed_count, snapshot.expired_count, snapshot.cancelled_count
            )

            midpoint = split_window(window_start, window_end)
            if owner == OwnerType.VITAL:
                readings = self._vital_readings(session, patient_id, window_start, window_end)
                if readings:
                    snapshot.average_value = round(_mean([v for _, v in readings]), 2)
                snapshot.trend = compare_halves(
                    _mean([v for d, v in readings if d < midpoint]),
                    _mean([v for d, v in readings if d >= midpoint]),
                    tolerance
                )
            else:
                snapshot.trend = compare_halves(
                    self._half_rate(session, patient_id, owner, window_start, midpoint - timedelta(days=1)),
                    self._half_rate(session, patient_id, owner, midpoint, window_end),
                    tolerance
                )

            return snapshot

        return self._read("adherence stats", _calculate, db)

    def _half_rate(
        self,
        session: Session,
        patient_id: int,
        owner: OwnerType,
        start: date,
        end: date
    ) -> Optional[float]:
        """Completion rate of one half, None when nothing in it applies"""
        if end < start:
            return None
        counts = self._status_counts(session, patient_id, owner, start, end)
        completed = counts.get(EventStatus.COMPLETED, 0)
        expired = counts.get(EventStatus.EXPIRED, 0)
        cancelled = counts.get(EventStatus.CANCELLED, 0)
        if completed + expired + cancelled == 0:
            return None
        return completion_rate(completed, expired, cancelled)

    async def list_missed(
        self,
        patient_id: int,
        category: Optional[OwnerType] = None,
        window_start: Optional[date] = None,
        window_end: Optional[date] = None,
        limit: Optional[int] = None,
        db: Optional[Session] = None
    ) -> Dict[str, Any]:
        """
        Missed (expired) events grouped by owner type

        Cancelled events are intentional and never listed. Lists are most
        recent first and capped per category; counts are not capped.

        Returns:
            {"medications": [...], "appointments": [...], "vitals": [...],
             "counts": {"medications", "appointments", "vitals", "total_missed"}}
        """
        cap = limit or settings.MISSED_EVENTS_LIMIT
        owners = [OwnerType(category)] if category else list(CATEGORY_KEYS)

        def _list(session: Session) -> Dict[str, Any]:
            filters = [
                models.ScheduleEvent.patient_id == patient_id,
                models.ScheduleEvent.status == EventStatus.EXPIRED
            ]
            if window_start:
                filters.append(models.ScheduleEvent.occurrence_date >= window_start)
            if window_end:
                filters.append(models.ScheduleEvent.occurrence_date <= window_end)

            result: Dict[str, Any] = {key: [] for key in CATEGORY_KEYS.values()}
            counts: Dict[str, int] = {key: 0 for key in CATEGORY_KEYS.values()}

            count_rows = session.query(
                models.ScheduleEvent.owner_type,
                func.count(models.ScheduleEvent.id)
            ).filter(and_(*filters)).group_by(models.ScheduleEvent.owner_type).all()
            for owner_type, count in count_rows:
                owner = OwnerType(owner_type)
                if owner in owners:
                    counts[CATEGORY_KEYS[owner]] = count

            for owner in owners:
                rows = session.query(
                    models.ScheduleEvent,
                    models.RecurrenceTemplate.title
                ).join(
                    models.RecurrenceTemplate,
                    models.RecurrenceTemplate.id == models.ScheduleEvent.template_id
                ).filter(
                    and_(*filters, models.ScheduleEvent.owner_type == owner)
                ).order_by(
                    desc(models.ScheduleEvent.scheduled_start),
                    desc(models.ScheduleEvent.id)
                ).limit(cap).all()

                result[CATEGORY_KEYS[owner]] = [
                    {
                        "event_id": event.id,
                        "template_id": event.template_id,
                        "owner_id": event.owner_id,
                        "title": title,
                        "critical": event.critical,
                        "occurrence_date": event.occurrence_date.isoformat(),
                        "scheduled_start": event.scheduled_start.isoformat(),
                        "expired_at": event.expired_at.isoformat() if event.expired_at else None
                    }
                    for event, title in rows
                ]

            counts["total_missed"] = sum(counts.values())
            result["counts"] = counts
            return result

        return self._read("missed events", _list, db)

    async def get_upcoming_events(
        self,
        patient_id: int,
        now: Optional[datetime] = None,
        days: int = 7,
        limit: Optional[int] = None,
        db: Optional[Session] = None
    ) -> List[Dict[str, Any]]:
        """Open events whose window has not closed, starting within `days`"""
        current = to_naive_utc(now) if now else utcnow()
        horizon = current + timedelta(days=days)
        cap = limit or settings.UPCOMING_EVENTS_LIMIT

        def _get(session: Session) -> List[Dict[str, Any]]:
            rows = session.query(
                models.ScheduleEvent,
                models.RecurrenceTemplate.title
            ).join(
                models.RecurrenceTemplate,
                models.RecurrenceTemplate.id == models.ScheduleEvent.template_id
            ).filter(
                and_(
                    models.ScheduleEvent.patient_id == patient_id,
                    models.ScheduleEvent.status.in_(list(models.OPEN_STATUSES)),
                    models.ScheduleEvent.scheduled_end >= current,
                    models.ScheduleEvent.scheduled_start <= horizon
                )
            ).order_by(models.ScheduleEvent.scheduled_start).limit(cap).all()

            return [
                {
                    "event_id": event.id,
                    "template_id": event.template_id,
                    "owner_type": event.owner_type.value,
                    "owner_id": event.owner_id,
                    "title": title,
                    "status": event.status.value,
                    "critical": event.critical,
                    "occurrence_date": event.occurrence_date.isoformat(),
                    "scheduled_start": event.scheduled_start.isoformat(),
                    "scheduled_end": event.scheduled_end.isoformat()
                }
                for event, title in rows
            ]

        return self._read("upcoming events", _get, db)

    async def get_vital_timeline(
        self,
        template_id: int,
        limit: Optional[int] = None,
        db: Optional[Session] = None
    ) -> Dict[str, Any]:
        """
        Recent completed readings of a vital template with summary statistics

        Readings are most recent first.

        Raises:
            TemplateNotFoundError: unknown template
            AggregationError: storage failure while reading
        """
        cap = limit or settings.VITAL_TIMELINE_LIMIT

        def _get(session: Session) -> Dict[str, Any]:
            template = get_template_or_raise(session, template_id)
            vital_type = template.vital_type

            events = session.query(models.ScheduleEvent).filter(
                and_(
                    models.ScheduleEvent.template_id == template_id,
                    models.ScheduleEvent.status == EventStatus.COMPLETED
                )
            ).order_by(
                desc(models.ScheduleEvent.occurrence_date)
            ).limit(cap).all()

            readings = []
            for event in events:
                value = _payload_value(event.completion_payload)
                if value is None:
                    continue
                readings.append({
                    "event_id": event.id,
                    "occurrence_date": event.occurrence_date.isoformat(),
                    "completed_at": event.completed_at.isoformat() if event.completed_at else None,
                    "value": value,
                    "unit": (event.completion_payload or {}).get("unit"),
                    "flagged": event.flagged
                })

            values = [r["value"] for r in readings]
            average = _mean(values)
            return {
                "template_id": template_id,
                "title": template.title,
                "vital_type": {
                    "id": vital_type.id,
                    "name": vital_type.name,
                    "unit": vital_type.unit,
                    "normal_min": vital_type.normal_min,
                    "normal_max": vital_type.normal_max
                } if vital_type else None,
                "readings": readings,
                "statistics": {
                    "count": len(values),
                    "average": round(average, 2) if average is not None else None,
                    "min": min(values) if values else None,
                    "max": max(values) if values else None,
                    "flagged_count": sum(1 for r in readings if r["flagged"])
                }
            }

        return self._read("vital timeline", _get, db)


# Singleton instance
adherence_service = AdherenceService()
