"""Event emitters for the fleet engine."""

import logging
from abc import ABC, abstractmethod
from threading import Lock
from typing import Iterable

from fleet_engine.core.events_model import FleetEvent

logger = logging.getLogger(__name__)


ALLOWED_EVENTS = {
    "service.transition",
    "service.failed",
    "routing.applied",
    "certificate.issued",
    "certificate.failed",
    "snapshot.created",
    "snapshot.deleted",
    "restore.completed",
    "restore.failed",
}


class EventEmitter(ABC):
    """Abstract event emitter."""

    @abstractmethod
    def emit(self, events: Iterable[FleetEvent]) -> None:
        """Emit one or more events."""
        pass


class LogEventEmitter(EventEmitter):
    """Keeps events in memory and writes them to the log."""

    def __init__(self):
        self.events = []
        self._lock = Lock()

    def emit(self, events: Iterable[FleetEvent]) -> None:
        for event in events:
            # Validation
            if event.event_type not in ALLOWED_EVENTS:
                raise ValueError(f"Invalid event type: {event.event_type}")
            if not event.subject:
                raise ValueError("Event must have a subject")

            with self._lock:
                self.events.append(event)

            logger.info(f"[event] {event.event_type} | {event.subject} | {event.metadata}")

    def of_type(self, event_type: str):
        return [e for e in self.events if e.event_type == event_type]


class MultiEventEmitter:
    """Fan-out to multiple emitters."""

    def __init__(self, emitters: Iterable[EventEmitter]):
        self._emitters = list(emitters)

    def emit(self, events: Iterable[FleetEvent]):
        """Emit to all emitters."""
        events = list(events)
        for emitter in self._emitters:
            emitter.emit(events)


class NullEventEmitter(EventEmitter):
    """No-op emitter (used when events are not needed)."""

    def emit(self, events: Iterable[FleetEvent]) -> None:
        """Do nothing."""
        pass
