"""
gateway/notifications.py — Desktop Notification Sink

The gateway never talks to a notification daemon directly. It hands
summary/body pairs to a NotificationSink; ChatState decides whether to
create a new notification or update the one already on screen.

LogNotificationSink is the headless default: it records notifications as
structured log events so `python -m parley` works without a desktop session.
"""

from __future__ import annotations

import itertools
from typing import Any, Protocol, runtime_checkable

from parley.observability.logger import get_logger

log = get_logger(__name__)


@runtime_checkable
class NotificationSink(Protocol):
    """Anything that can show, update and dismiss one desktop notification."""

    def show(self, summary: str, body: str) -> Any:
        """Display a new notification and return an opaque handle."""
        ...

    def update(self, handle: Any, summary: str, body: str) -> None:
        """Replace the text of an already displayed notification."""
        ...

    def close(self, handle: Any) -> None:
        """Dismiss a displayed notification."""
        ...


class LogNotificationSink:
    """Writes notifications to the structured log instead of the desktop."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)

    def show(self, summary: str, body: str) -> int:
        handle = next(self._ids)
        log.info("notification.show", handle=handle, summary=summary, body=body)
        return handle

    def update(self, handle: int, summary: str, body: str) -> None:
        log.info("notification.update", handle=handle, summary=summary, body=body)

    def close(self, handle: int) -> None:
        log.info("notification.close", handle=handle)
