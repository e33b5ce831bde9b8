"""
Tests for Lifecycle Service
Tests guarded event transitions, payload validation and race safety
"""

import asyncio
import pytest
from datetime import date, datetime

from exceptions import EventNotFoundError, InvalidPayloadError, InvalidStateTransitionError
from models import EventStatus, OwnerType, ScheduleEvent
from payloads import VitalPayload
from services.lifecycle_service import LifecycleService
from services.materializer_service import MaterializerService
from tools.notification_service import SignalType


NOW = datetime(2025, 1, 1, 8, 10)


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def lifecycle(dispatcher):
    """Lifecycle service wired to a recording dispatcher"""
    return LifecycleService(dispatcher=dispatcher)


@pytest.fixture
def materialize(db_session):
    """Materialize a template and return its events in date order"""
    async def _materialize(template, through=date(2025, 1, 5)):
        await MaterializerService().materialize(template.id, through, db=db_session)
        return db_session.query(ScheduleEvent).filter(
            ScheduleEvent.template_id == template.id
        ).order_by(ScheduleEvent.occurrence_date).all()
    return _materialize


@pytest.fixture
def set_status(db_session):
    def _set(event_id, status):
        event = db_session.get(ScheduleEvent, event_id)
        event.status = status
        db_session.commit()
    return _set


# =============================================================================
# Start
# =============================================================================

@pytest.mark.database
class TestStartEvent:
    """Tests for the pending -> started transition"""

    @pytest.mark.asyncio
    async def test_start_pending(self, lifecycle, db_session, make_template, materialize):
        events = await materialize(make_template())

        event = await lifecycle.start_event(events[0].id, now=NOW, db=db_session)

        assert event.status == EventStatus.STARTED
        assert event.started_at == NOW

    @pytest.mark.asyncio
    async def test_start_twice_rejected(self, lifecycle, db_session, make_template, materialize):
        events = await materialize(make_template())
        await lifecycle.start_event(events[0].id, now=NOW, db=db_session)

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await lifecycle.start_event(events[0].id, now=NOW, db=db_session)

        assert exc_info.value.current_status == "started"
        assert exc_info.value.attempted == "start"

    @pytest.mark.asyncio
    async def test_unknown_event(self, lifecycle, db_session):
        with pytest.raises(EventNotFoundError):
            await lifecycle.start_event(12345, db=db_session)


# =============================================================================
# Complete
# =============================================================================

@pytest.mark.database
class TestCompleteEvent:
    """Tests for completion with owner-specific payloads"""

    @pytest.mark.asyncio
    async def test_complete_medication(self, lifecycle, db_session, make_template, materialize, recorded_signals):
        events = await materialize(make_template())

        event = await lifecycle.complete_event(events[0].id, {"taken": True}, now=NOW, db=db_session)

        assert event.status == EventStatus.COMPLETED
        assert event.completed_at == NOW
        assert event.completion_payload["kind"] == "medication"
        assert event.completion_payload["taken"] is True
        assert [s.signal_type for s in recorded_signals] == [SignalType.EVENT_COMPLETED]
        assert recorded_signals[0].event_id == event.id

    @pytest.mark.asyncio
    async def test_complete_started(self, lifecycle, db_session, make_template, materialize):
        events = await materialize(make_template())
        await lifecycle.start_event(events[0].id, now=NOW, db=db_session)

        event = await lifecycle.complete_event(events[0].id, {"taken": True}, now=NOW, db=db_session)

        assert event.status == EventStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_complete_twice_is_an_error(self, lifecycle, db_session, make_template, materialize, recorded_signals):
        """A duplicate completion is never a silent success"""
        events = await materialize(make_template())
        await lifecycle.complete_event(events[0].id, {"taken": True}, now=NOW, db=db_session)

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await lifecycle.complete_event(events[0].id, {"taken": True}, now=NOW, db=db_session)

        assert exc_info.value.current_status == "completed"
        assert len(recorded_signals) == 1

    @pytest.mark.asyncio
    async def test_retry_with_other_payload_reports_state(self, lifecycle, db_session, make_template, materialize):
        """A completed event answers a retry with its state, not with payload errors"""
        events = await materialize(make_template())
        await lifecycle.complete_event(events[0].id, {"taken": True}, now=NOW, db=db_session)

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await lifecycle.complete_event(events[0].id, {"outcome": "attended"}, db=db_session)

        assert exc_info.value.current_status == "completed"
        assert exc_info.value.attempted == "complete"

    @pytest.mark.asyncio
    async def test_payload_for_wrong_owner(self, lifecycle, db_session, make_template, materialize):
        events = await materialize(make_template())

        with pytest.raises(InvalidPayloadError):
            await lifecycle.complete_event(events[0].id, {"outcome": "attended"}, db=db_session)

        assert db_session.get(ScheduleEvent, events[0].id).status == EventStatus.PENDING

    @pytest.mark.asyncio
    async def test_appointment_outcome(self, lifecycle, db_session, make_template, materialize):
        events = await materialize(make_template(owner_type=OwnerType.APPOINTMENT))

        event = await lifecycle.complete_event(events[0].id, {"outcome": "no_show"}, now=NOW, db=db_session)

        assert event.completion_payload["outcome"] == "no_show"

    @pytest.mark.asyncio
    async def test_complete_prior_event(self, lifecycle, db_session, make_template, materialize, set_status):
        events = await materialize(make_template())
        set_status(events[0].id, EventStatus.PRIOR)

        event = await lifecycle.complete_event(events[0].id, {"taken": True}, now=NOW, db=db_session)

        assert event.status == EventStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_expired_event_cannot_complete(self, lifecycle, db_session, make_template, materialize, set_status):
        events = await materialize(make_template())
        set_status(events[0].id, EventStatus.EXPIRED)

        with pytest.raises(InvalidStateTransitionError):
            await lifecycle.complete_event(events[0].id, {"taken": True}, db=db_session)


@pytest.mark.database
class TestVitalCompletion:
    """Tests for vital readings against the vital type"""

    @pytest.mark.asyncio
    async def test_reading_in_range(self, lifecycle, db_session, make_template, materialize, vital_type):
        events = await materialize(make_template(owner_type=OwnerType.VITAL, vital_type_id=vital_type.id))

        event = await lifecycle.complete_event(
            events[0].id, VitalPayload(value=120, unit="mmHg"), now=NOW, db=db_session
        )

        assert event.flagged is False
        assert event.completion_payload["value"] == 120.0

    @pytest.mark.asyncio
    async def test_reading_out_of_range_flagged(
        self, lifecycle, db_session, make_template, materialize, vital_type, recorded_signals
    ):
        events = await materialize(make_template(owner_type=OwnerType.VITAL, vital_type_id=vital_type.id))

        event = await lifecycle.complete_event(
            events[0].id, {"value": 165, "unit": "MMHG"}, now=NOW, db=db_session
        )

        assert event.flagged is True
        assert recorded_signals[0].data["flagged"] is True

    @pytest.mark.asyncio
    async def test_unit_mismatch_rejected(self, lifecycle, db_session, make_template, materialize, vital_type):
        events = await materialize(make_template(owner_type=OwnerType.VITAL, vital_type_id=vital_type.id))

        with pytest.raises(InvalidPayloadError):
            await lifecycle.complete_event(events[0].id, {"value": 16, "unit": "kPa"}, db=db_session)

    @pytest.mark.asyncio
    async def test_retry_with_wrong_unit_after_completion(
        self, lifecycle, db_session, make_template, materialize, vital_type
    ):
        events = await materialize(make_template(owner_type=OwnerType.VITAL, vital_type_id=vital_type.id))
        await lifecycle.complete_event(events[0].id, {"value": 120, "unit": "mmHg"}, db=db_session)

        with pytest.raises(InvalidStateTransitionError):
            await lifecycle.complete_event(events[0].id, {"value": 16, "unit": "kPa"}, db=db_session)

    @pytest.mark.asyncio
    async def test_vital_without_type_never_flagged(self, lifecycle, db_session, make_template, materialize):
        events = await materialize(make_template(owner_type=OwnerType.VITAL))

        event = await lifecycle.complete_event(events[0].id, {"value": 999, "unit": "x"}, db=db_session)

        assert event.flagged is False


# =============================================================================
# Cancel and Reconcile
# =============================================================================

@pytest.mark.database
class TestCancelEvent:
    """Tests for cancellation"""

    @pytest.mark.asyncio
    async def test_cancel_records_reason(self, lifecycle, db_session, make_template, materialize):
        events = await materialize(make_template())

        event = await lifecycle.cancel_event(events[0].id, reason="hospitalized", now=NOW, db=db_session)

        assert event.status == EventStatus.CANCELLED
        assert event.cancel_reason == "hospitalized"
        assert event.cancelled_at == NOW

    @pytest.mark.asyncio
    async def test_terminal_events_are_immutable(self, lifecycle, db_session, make_template, materialize):
        events = await materialize(make_template())
        await lifecycle.complete_event(events[0].id, {"taken": True}, db=db_session)
        await lifecycle.cancel_event(events[1].id, db=db_session)

        for event_id in (events[0].id, events[1].id):
            with pytest.raises(InvalidStateTransitionError):
                await lifecycle.cancel_event(event_id, db=db_session)
            with pytest.raises(InvalidStateTransitionError):
                await lifecycle.start_event(event_id, db=db_session)
            with pytest.raises(InvalidStateTransitionError):
                await lifecycle.complete_event(event_id, {"taken": True}, db=db_session)

        db_session.expire_all()
        assert db_session.get(ScheduleEvent, events[0].id).status == EventStatus.COMPLETED
        assert db_session.get(ScheduleEvent, events[1].id).status == EventStatus.CANCELLED
        assert db_session.get(ScheduleEvent, events[0].id).is_terminal
        assert not db_session.get(ScheduleEvent, events[2].id).is_terminal


@pytest.mark.database
class TestExpirePriorEvent:
    """Tests for reconciling imported history"""

    @pytest.mark.asyncio
    async def test_prior_to_expired(self, lifecycle, db_session, make_template, materialize, set_status):
        events = await materialize(make_template())
        set_status(events[0].id, EventStatus.PRIOR)

        event = await lifecycle.expire_prior_event(events[0].id, now=NOW, db=db_session)

        assert event.status == EventStatus.EXPIRED
        assert event.expired_at == NOW

    @pytest.mark.asyncio
    async def test_pending_is_not_prior(self, lifecycle, db_session, make_template, materialize):
        events = await materialize(make_template())

        with pytest.raises(InvalidStateTransitionError):
            await lifecycle.expire_prior_event(events[0].id, db=db_session)


# =============================================================================
# Races
# =============================================================================

@pytest.mark.database
class TestRaces:
    """Tests for conflicting transitions on one event"""

    @pytest.mark.asyncio
    async def test_two_sessions_complete_once(self, lifecycle, session_factory, db_session, make_template, materialize):
        """The second writer sees the first writer's terminal state"""
        events = await materialize(make_template())
        event_id = events[0].id

        first, second = session_factory(), session_factory()
        try:
            # both callers have read the event as pending
            assert first.get(ScheduleEvent, event_id).status == EventStatus.PENDING
            assert second.get(ScheduleEvent, event_id).status == EventStatus.PENDING

            await lifecycle.complete_event(event_id, {"taken": True}, db=first)
            with pytest.raises(InvalidStateTransitionError):
                await lifecycle.complete_event(event_id, {"taken": False}, db=second)
        finally:
            first.close()
            second.close()

        db_session.expire_all()
        event = db_session.get(ScheduleEvent, event_id)
        assert event.completion_payload["taken"] is True

    @pytest.mark.asyncio
    async def test_complete_and_cancel_gathered(self, lifecycle, db_session, make_template, materialize):
        events = await materialize(make_template())
        event_id = events[0].id

        results = await asyncio.gather(
            lifecycle.complete_event(event_id, {"taken": True}, db=db_session),
            lifecycle.cancel_event(event_id, reason="duplicate", db=db_session),
            return_exceptions=True
        )

        winners = [r for r in results if isinstance(r, ScheduleEvent)]
        losers = [r for r in results if isinstance(r, InvalidStateTransitionError)]
        assert len(winners) == 1
        assert len(losers) == 1
