"""Notification routing — dispatcher plus pluggable sinks."""

from tierforge.routing.dispatcher import NotificationDispatcher

__all__ = ["NotificationDispatcher"]
