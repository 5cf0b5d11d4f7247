"""Email notification sink — builds per-topic email payloads.

Mirrors a topic subscription: the sink only accepts events whose topic is
in its subscription list (empty list = every topic).  Actual SMTP delivery
is left to a transport layer; this sink builds and buffers payloads.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict

from tierforge.models.events import NotificationEvent
from tierforge.routing.sinks._formatting import (
    extract_detail_lines,
    format_event_label,
    format_subject,
)

logger = logging.getLogger(__name__)


class EmailPayload(BaseModel):
    """An email notification payload ready for SMTP delivery."""

    model_config = ConfigDict(frozen=True)

    recipient: str
    sender: str
    subject: str
    body_text: str
    headers: dict[str, str] = {}


class EmailSink:
    """Builds email payloads for subscribed topics (no delivery).

    Parameters
    ----------
    recipient:
        The email address subscribed to the topics.
    topics:
        Topic names this subscription covers.  Empty means all topics.
    sender:
        The sender address.
    """

    def __init__(
        self,
        recipient: str,
        topics: list[str] | None = None,
        sender: str = "pipelines@localhost",
    ) -> None:
        self._recipient = recipient
        self._topics = set(topics or [])
        self._sender = sender
        self._pending_payloads: list[EmailPayload] = []

    @property
    def sink_name(self) -> str:
        return f"email:{self._recipient}"

    def accept(self, event: NotificationEvent) -> None:
        if self._topics and event.topic not in self._topics:
            return

        self._pending_payloads.append(
            EmailPayload(
                recipient=self._recipient,
                sender=self._sender,
                subject=format_subject(event),
                body_text=self._format_body_text(event),
                headers={
                    "X-Tierforge-Execution-Id": event.execution_id,
                    "X-Tierforge-Event-Id": event.event_id,
                    "X-Tierforge-Event-Type": event.event_type.value,
                    "X-Tierforge-Topic": event.topic,
                },
            )
        )
        logger.debug("EmailSink: queued notification for event %s", event.event_id)

    def flush(self) -> list[EmailPayload]:
        """Return and clear all pending payloads."""
        payloads = list(self._pending_payloads)
        self._pending_payloads.clear()
        return payloads

    @property
    def pending_count(self) -> int:
        return len(self._pending_payloads)

    @staticmethod
    def _format_body_text(event: NotificationEvent) -> str:
        lines: list[str] = [
            f"Pipeline {format_event_label(event)}",
            "=" * 40,
            f"Execution: {event.execution_id}",
            f"Service:   {event.payload.get('service', '')}",
            f"Env:       {event.payload.get('environment', '')}",
            f"Timestamp: {event.occurred_at.isoformat()}",
            "",
            *extract_detail_lines(event),
            "",
            "-- Tierforge Pipeline Notification",
        ]
        return "\n".join(lines)
