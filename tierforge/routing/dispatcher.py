"""Notification Dispatcher — fans typed events out to ALL configured sinks.

Delivery is fire-and-forget from the pipeline's point of view: ``emit``
never raises and never waits for delivery confirmation.  A sink failure
is logged and does not prevent delivery to the remaining sinks.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from tierforge.config import EngineSettings
from tierforge.core.errors import SinkDispatchError
from tierforge.models.events import EventSeverity, EventType, NotificationEvent

if TYPE_CHECKING:
    from tierforge.routing.sinks import BaseSink

logger = logging.getLogger(__name__)

# Keys kept when notification_detail == "basic".
BASIC_PAYLOAD_KEYS: frozenset[str] = frozenset({
    "execution_id",
    "service",
    "environment",
    "pipeline",
    "stage",
    "status",
    "failure_reason",
    "review_link",
})


class NotificationDispatcher:
    """Routes notification events to every registered sink.

    Usage
    -----
    >>> dispatcher = NotificationDispatcher()
    >>> dispatcher.register_sink(memory_sink)
    >>> dispatcher.emit(EventType.STAGE_STARTED, {"execution_id": "tf-1"})
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        sinks: list[BaseSink] | None = None,
    ) -> None:
        self._settings = settings or EngineSettings()
        self._sinks: list[BaseSink] = []
        for sink in sinks or []:
            self.register_sink(sink)

    # ------------------------------------------------------------------
    # Sink management
    # ------------------------------------------------------------------

    def register_sink(self, sink: BaseSink) -> None:
        """Register a sink.  Duplicate registration of one instance is ignored."""
        if sink not in self._sinks:
            self._sinks.append(sink)
            logger.info("Registered sink: %s", sink.sink_name)

    def unregister_sink(self, sink: BaseSink) -> None:
        try:
            self._sinks.remove(sink)
            logger.info("Unregistered sink: %s", sink.sink_name)
        except ValueError:
            pass

    @property
    def registered_sinks(self) -> list[BaseSink]:
        return list(self._sinks)

    # ------------------------------------------------------------------
    # Emit (fire-and-forget)
    # ------------------------------------------------------------------

    def emit(
        self,
        event_type: EventType,
        payload: dict[str, Any],
        *,
        severity: EventSeverity = EventSeverity.INFO,
    ) -> NotificationEvent | None:
        """Build and dispatch an event.  Never raises into the pipeline.

        Returns the event that was dispatched, or ``None`` when
        notifications are disabled.
        """
        if not self._settings.enable_notifications:
            logger.debug("Notifications disabled — dropping %s", event_type.value)
            return None

        event = NotificationEvent(
            event_type=event_type,
            execution_id=str(payload.get("execution_id", "")),
            topic=self._topic_for(event_type, str(payload.get("environment", ""))),
            severity=severity,
            payload=self._shape_payload(payload),
        )
        try:
            self.dispatch(event)
        except SinkDispatchError as exc:
            logger.error("Notification %s undelivered: %s", event.event_id, exc)
        return event

    def dispatch(self, event: NotificationEvent) -> list[str]:
        """Dispatch an event to ALL registered sinks.

        Returns the names of sinks that accepted the event.

        Raises
        ------
        SinkDispatchError
            If *all* sinks fail.  Individual failures are tolerated.
        """
        if not self._sinks:
            logger.warning("No sinks registered — event %s dropped", event.event_id)
            return []

        succeeded: list[str] = []
        errors: list[tuple[str, Exception]] = []

        for sink in self._sinks:
            try:
                sink.accept(event)
                succeeded.append(sink.sink_name)
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "Sink %s failed for event %s: %s",
                    sink.sink_name,
                    event.event_id,
                    exc,
                )
                errors.append((sink.sink_name, exc))

        if errors and not succeeded:
            raise SinkDispatchError(
                f"All {len(errors)} sinks failed for event {event.event_id}: "
                + "; ".join(f"{name}: {exc}" for name, exc in errors)
            )

        if errors:
            logger.warning(
                "Event %s: %d/%d sinks succeeded, %d failed",
                event.event_id,
                len(succeeded),
                len(self._sinks),
                len(errors),
            )

        return succeeded

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _topic_for(self, event_type: EventType, environment: str) -> str:
        if event_type.is_approval_event:
            return self._settings.approval_topic(environment)
        return self._settings.pipeline_topic(environment)

    def _shape_payload(self, payload: dict[str, Any]) -> dict[str, Any]:
        if self._settings.notification_detail == "basic":
            return {k: v for k, v in payload.items() if k in BASIC_PAYLOAD_KEYS}
        return dict(payload)
