"""
Event dispatch for picking sessions.

The state machine publishes Announcement, SessionCompleted and
MutationApplied events; presentation code subscribes with plain callables.
"""
from __future__ import annotations

import structlog
from typing import Callable, Union

from models.schemas import Announcement, MutationApplied, SessionCompleted

logger = structlog.get_logger()

PickingEvent = Union[Announcement, SessionCompleted, MutationApplied]
EventListener = Callable[[PickingEvent], None]


class EventDispatcher:

    def __init__(self):
        self._listeners: list[EventListener] = []
        self.history: list[PickingEvent] = []

    def subscribe(self, listener: EventListener):
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: EventListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def publish(self, event: PickingEvent):
        self.history.append(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                # subscriber failures never reach the session
                logger.error("event_listener_failed",
                             event=type(event).__name__, error=str(e))

    def of_type(self, event_type: type) -> list[PickingEvent]:
        return [e for e in self.history if isinstance(e, event_type)]
