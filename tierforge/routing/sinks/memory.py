"""In-memory sink — keeps every accepted event in a list."""

from __future__ import annotations

from tierforge.models.events import EventType, NotificationEvent


class MemorySink:
    """Collects events in memory.  Used by the demo command and tests."""

    def __init__(self, name: str = "memory") -> None:
        self._name = name
        self.events: list[NotificationEvent] = []

    @property
    def sink_name(self) -> str:
        return self._name

    def accept(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> list[NotificationEvent]:
        return [e for e in self.events if e.event_type == event_type]

    def for_execution(self, execution_id: str) -> list[NotificationEvent]:
        return [e for e in self.events if e.execution_id == execution_id]

    def clear(self) -> None:
        self.events.clear()
