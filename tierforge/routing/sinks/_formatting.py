"""Shared formatting helpers for notification sinks."""

from __future__ import annotations

from tierforge.models.events import NotificationEvent


def format_event_label(event: NotificationEvent) -> str:
    """Return a human-readable label for the event type.

    >>> from tierforge.models.events import EventType, NotificationEvent
    >>> format_event_label(NotificationEvent(event_type=EventType.APPROVAL_REQUESTED))
    'Approval Requested'
    """
    return event.event_type.value.replace(".", " ").replace("_", " ").title()


def format_subject(event: NotificationEvent) -> str:
    """One-line subject: severity prefix, label, service/environment."""
    service = event.payload.get("service", "?")
    environment = event.payload.get("environment", "?")
    prefix = "[URGENT] " if event.severity.value == "urgent" else ""
    return f"{prefix}{format_event_label(event)}: {service} ({environment})"


def extract_detail_lines(event: NotificationEvent) -> list[str]:
    """Return ``"Label: value"`` lines for the payload fields that are present."""
    labels = [
        ("pipeline", "Pipeline"),
        ("revision", "Revision"),
        ("stage", "Stage"),
        ("status", "Status"),
        ("failure_reason", "Failure"),
        ("detail", "Detail"),
        ("review_link", "Review"),
        ("deadline", "Deadline"),
        ("artifact_ref", "Artifact"),
    ]
    lines = [
        f"{label}: {event.payload[key]}"
        for key, label in labels
        if event.payload.get(key) not in (None, "")
    ]
    tags = event.payload.get("tags")
    if tags:
        lines.append(f"Tags: {', '.join(tags)}")
    return lines
