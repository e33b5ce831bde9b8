"""
Event Notification Tool
Fire-and-forget outbound signals for missed and completed occurrences
"""

import logging
from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum

from models import OwnerType, ScheduleEvent
from tools.timeutils import utcnow


logger = logging.getLogger(__name__)


class SignalType(str, Enum):
    """Outbound message types consumed by the external dispatcher"""
    EVENT_MISSED = "event.missed"
    EVENT_COMPLETED = "event.completed"


class NotificationPriority(str, Enum):
    """Notification priority levels"""
    CRITICAL = "critical"    # Emergency, immediate delivery
    NORMAL = "normal"        # Standard delivery


@dataclass
class EventSignal:
    """A single outbound signal about one occurrence"""
    signal_type: SignalType
    event_id: int
    template_id: int
    patient_id: int
    owner_type: OwnerType
    owner_id: int
    occurrence_date: date
    priority: NotificationPriority = NotificationPriority.NORMAL
    emitted_at: datetime = field(default_factory=utcnow)
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_event(
        cls,
        signal_type: SignalType,
        event: ScheduleEvent,
        **data: Any
    ) -> "EventSignal":
        return cls(
            signal_type=signal_type,
            event_id=event.id,
            template_id=event.template_id,
            patient_id=event.patient_id,
            owner_type=OwnerType(event.owner_type),
            owner_id=event.owner_id,
            occurrence_date=event.occurrence_date,
            priority=NotificationPriority.CRITICAL if event.critical else NotificationPriority.NORMAL,
            data=data
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.signal_type.value,
            "event_id": self.event_id,
            "template_id": self.template_id,
            "patient_id": self.patient_id,
            "owner_type": self.owner_type.value,
            "owner_id": self.owner_id,
            "occurrence_date": self.occurrence_date.isoformat(),
            "priority": self.priority.value,
            "emitted_at": self.emitted_at.isoformat(),
            "data": self.data
        }


SignalHandler = Callable[[EventSignal], Any]


class EventDispatcher:
    """
    Hands signals to subscribed handlers.

    Delivery is fire-and-forget: a failing handler is logged and the
    remaining handlers still run. Callers never see delivery errors.
    """

    def __init__(self):
        self._handlers: Dict[SignalType, List[SignalHandler]] = {
            signal_type: [] for signal_type in SignalType
        }

    def subscribe(self, signal_type: SignalType, handler: SignalHandler) -> None:
        """Register a handler for one signal type"""
        self._handlers[signal_type].append(handler)

    def unsubscribe(self, signal_type: SignalType, handler: SignalHandler) -> None:
        """Remove a previously registered handler"""
        if handler in self._handlers[signal_type]:
            self._handlers[signal_type].remove(handler)

    def clear(self) -> None:
        for handlers in self._handlers.values():
            handlers.clear()

    def emit(self, signal: EventSignal) -> int:
        """
        Deliver a signal to every handler of its type

        Returns:
            Number of handlers that accepted the signal
        """
        delivered = 0
        for handler in list(self._handlers[signal.signal_type]):
            try:
                handler(signal)
                delivered += 1
            except Exception as e:
                logger.error(
                    f"Error delivering {signal.signal_type.value} for event "
                    f"{signal.event_id}: {e}"
                )
        return delivered

    def emit_many(self, signals: List[EventSignal]) -> int:
        return sum(self.emit(signal) for signal in signals)


def log_signal(signal: EventSignal) -> None:
    """Default handler: record the signal in the application log"""
    level = logging.WARNING if signal.priority == NotificationPriority.CRITICAL else logging.INFO
    logger.log(
        level,
        f"[{signal.signal_type.value}] patient {signal.patient_id} "
        f"{signal.owner_type.value} {signal.owner_id} on {signal.occurrence_date.isoformat()} "
        f"(event {signal.event_id})"
    )


# Singleton instance
event_dispatcher = EventDispatcher()
event_dispatcher.subscribe(SignalType.EVENT_MISSED, log_signal)
event_dispatcher.subscribe(SignalType.EVENT_COMPLETED, log_signal)


__all__ = [
    "SignalType",
    "NotificationPriority",
    "EventSignal",
    "EventDispatcher",
    "log_signal",
    "event_dispatcher",
]
