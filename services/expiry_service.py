"""
Expiry Service
Periodic sweep that marks overdue, unresolved events as expired
"""

import asyncio
import logging
from typing import List, Optional
from datetime import datetime
from sqlalchemy.orm import Session
from sqlalchemy import and_
from sqlalchemy.exc import SQLAlchemyError

from config import settings
from database import get_db_context
import models
from models import EventStatus
from services.lifecycle_service import conditional_transition
from tools.notification_service import EventDispatcher, EventSignal, SignalType, event_dispatcher
from tools.timeutils import to_naive_utc, utcnow


logger = logging.getLogger(__name__)


class ExpiryService:
    """
    Service for expiring overdue events

    The sweep uses the same conditional update as the lifecycle service,
    restricted to pending/started, so a completion or cancellation that
    commits first always wins and the event is never wrongly expired.
    """

    def __init__(self, dispatcher: Optional[EventDispatcher] = None, batch_size: Optional[int] = None):
        self.dispatcher = dispatcher or event_dispatcher
        self.batch_size = batch_size or settings.SWEEP_BATCH_SIZE

    def _sweep(self, session: Session, now: datetime) -> int:
        cutoff = to_naive_utc(now)
        expired = 0
        last_id = 0

        while True:
            candidates = [
                row.id for row in session.query(models.ScheduleEvent.id).filter(
                    and_(
                        models.ScheduleEvent.status.in_(list(models.EXPIRE_SOURCES)),
                        models.ScheduleEvent.scheduled_end < cutoff,
                        models.ScheduleEvent.id > last_id
                    )
                ).order_by(models.ScheduleEvent.id).limit(self.batch_size).all()
            ]
            if not candidates:
                break

            batch_ids = [
                event_id for event_id in candidates
                if conditional_transition(
                    session, event_id, models.EXPIRE_SOURCES,
                    {"status": EventStatus.EXPIRED, "expired_at": cutoff, "updated_at": cutoff}
                )
            ]
            session.commit()
            # Signal per batch: committed rows are never reselected by a later tick
            self._signal_missed(session, batch_ids)
            expired += len(batch_ids)
            last_id = candidates[-1]

        if expired:
            logger.info(f"Expired {expired} overdue events (cutoff {cutoff.isoformat()})")
        return expired

    def _signal_missed(self, session: Session, event_ids: List[int]) -> None:
        """One event.missed per newly expired event; delivery is not our concern"""
        if not event_ids:
            return
        events = session.query(models.ScheduleEvent).filter(
            models.ScheduleEvent.id.in_(event_ids)
        ).order_by(models.ScheduleEvent.id).all()
        for event in events:
            self.dispatcher.emit(EventSignal.from_event(
                SignalType.EVENT_MISSED, event,
                scheduled_start=event.scheduled_start.isoformat(),
                scheduled_end=event.scheduled_end.isoformat()
            ))

    async def sweep_expired(
        self,
        now: Optional[datetime] = None,
        db: Optional[Session] = None
    ) -> int:
        """
        Expire every pending/started event whose window ended before `now`

        Idempotent: a second run over the same rows changes nothing.

        Args:
            now: Sweep time (aware or naive UTC), defaults to the current time
            db: Database session

        Returns:
            Number of events transitioned to expired by this run
        """
        sweep_time = now or utcnow()

        if db:
            return self._sweep(db, sweep_time)

        with get_db_context() as session:
            return self._sweep(session, sweep_time)


class ExpirySweeper:
    """
    Runs the expiry sweep on a fixed interval inside the event loop.

    A failed tick is logged and retried on the next one; no compensation
    is needed because the sweep is idempotent.
    """

    def __init__(
        self,
        service: Optional[ExpiryService] = None,
        interval_seconds: Optional[int] = None
    ):
        self.service = service or expiry_service
        self.interval_seconds = interval_seconds or settings.SWEEP_INTERVAL_SECONDS
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()
        self.ticks = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> Optional[int]:
        """Run one sweep; returns the count, or None if the sweep failed"""
        self.ticks += 1
        try:
            # The sweep is blocking database work; keep it off the event loop
            return await asyncio.to_thread(self._run_sync)
        except SQLAlchemyError as e:
            self.failures += 1
            logger.error(f"Expiry sweep failed, retrying next tick: {e}")
            return None
        except Exception:
            self.failures += 1
            logger.exception("Unexpected error in expiry sweep, retrying next tick")
            return None

    def _run_sync(self) -> int:
        with get_db_context() as session:
            return self.service._sweep(session, utcnow())

    async def _loop(self) -> None:
        logger.info(f"Expiry sweeper started (every {self.interval_seconds}s)")
        while not self._stopping.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue
        logger.info("Expiry sweeper stopped")

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if not self._task:
            return
        self._stopping.set()
        await self._task
        self._task = None


# Singleton instance
expiry_service = ExpiryService()
