# File: parkcore/infrastructure/messaging.py
"""
Messaging infrastructure for the parking engine

In-process publish/subscribe for domain events. The lifecycle manager
publishes only after its transaction commits, so subscribers never see an
event for a rolled-back change. Delivery of notifications is a subscriber's
job; the engine only announces.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
import json
import logging
import threading

from ..domain.models import new_id, utc_now


# ============================================================================
# EVENTS
# ============================================================================

class EventType(str, Enum):
    VEHICLE_ENTERED = "vehicle.entered"
    VEHICLE_EXITED = "vehicle.exited"
    SESSION_FORCE_ENDED = "session.force_ended"
    SLOT_OVERRIDDEN = "session.slot_overridden"
    SLOT_MAINTENANCE_SET = "slot.maintenance_set"
    SLOT_MAINTENANCE_RELEASED = "slot.maintenance_released"
    OVERSTAY_DETECTED = "session.overstay_detected"


@dataclass
class DomainEvent:
    """Something that happened to a session or slot"""
    event_type: EventType
    aggregate_id: Optional[str] = None
    aggregate_type: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['event_type'] = self.event_type.value
        data['timestamp'] = self.timestamp.isoformat()
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


# ============================================================================
# EVENT HANDLERS
# ============================================================================

class EventHandler(ABC):
    """Abstract base class for event handlers"""

    @abstractmethod
    def handle(self, event: DomainEvent) -> None:
        pass

    def can_handle(self, event: DomainEvent) -> bool:
        return True


class CallableEventHandler(EventHandler):
    """Adapts a plain function to the EventHandler interface"""

    def __init__(self, func: Callable[[DomainEvent], None]):
        self.func = func

    def handle(self, event: DomainEvent) -> None:
        self.func(event)

    def __eq__(self, other) -> bool:
        return isinstance(other, CallableEventHandler) and other.func == self.func

    def __hash__(self) -> int:
        return hash(self.func)


class LoggingEventHandler(EventHandler):
    """Writes every event it receives to the log as JSON"""

    def __init__(self, level: int = logging.INFO):
        self.level = level
        self._logger = logging.getLogger(self.__class__.__name__)

    def handle(self, event: DomainEvent) -> None:
        self._logger.log(self.level, event.to_json())


# ============================================================================
# EVENT BUS (In-memory)
# ============================================================================

class EventBus:
    """
    In-memory event bus

    Handler failures are logged and never reach the publisher.
    """

    def __init__(self):
        self._subscribers: Dict[EventType, List[EventHandler]] = {}
        self._lock = threading.Lock()
        self._logger = logging.getLogger(self.__class__.__name__)

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        with self._lock:
            handlers = self._subscribers.setdefault(event_type, [])
            if handler not in handlers:
                handlers.append(handler)
                self._logger.debug(f"Subscribed {handler.__class__.__name__} to {event_type.value}")

    def subscribe_all(self, handler: EventHandler) -> None:
        for event_type in EventType:
            self.subscribe(event_type, handler)

    def unsubscribe(self, event_type: EventType, handler: EventHandler) -> None:
        with self._lock:
            handlers = self._subscribers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)
                self._logger.debug(f"Unsubscribed {handler.__class__.__name__} from {event_type.value}")

    def publish(self, event: DomainEvent) -> int:
        """Deliver to every subscriber; returns how many handlers failed"""
        self._logger.debug(f"Publishing event: {event.event_type.value} (ID: {event.event_id})")
        with self._lock:
            handlers = list(self._subscribers.get(event.event_type, []))

        failures = 0
        for handler in handlers:
            if not handler.can_handle(event):
                continue
            try:
                handler.handle(event)
            except Exception as e:
                failures += 1
                self._logger.error(
                    f"Error handling event {event.event_type.value} with {handler.__class__.__name__}: {e}",
                    exc_info=True
                )
        return failures

    def clear_subscribers(self) -> None:
        with self._lock:
            self._subscribers.clear()
