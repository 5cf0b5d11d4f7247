"""Sink protocol for Tierforge notifications.

All sinks implement the ``BaseSink`` protocol: a ``sink_name`` property
and an ``accept(event)`` method.  The dispatcher calls ``accept`` on every
registered sink for every emitted event.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from tierforge.models.events import NotificationEvent


@runtime_checkable
class BaseSink(Protocol):
    """Protocol that every notification sink must implement.

    Attributes
    ----------
    sink_name : str
        A unique human-readable identifier for this sink instance
        (e.g. ``"local_file"``, ``"memory"``).
    """

    @property
    def sink_name(self) -> str:
        """Return the unique name of this sink."""
        ...

    def accept(self, event: NotificationEvent) -> None:
        """Accept and process an event.

        Critical failures may raise; the dispatcher logs them and continues
        to the next sink.
        """
        ...
