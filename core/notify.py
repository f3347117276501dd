"""
core/notify.py -- Transient user-facing notifications.

The client equivalent of toast messages: mutation helpers report outcomes here
instead of raising, so a failed like or comment never surfaces as an unhandled
error. The view layer (the CLI in main.py) drains pending() to render them.
Every notification is also logged.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone

logger = logging.getLogger("inbook.notify")

_LOG_LEVELS = {"success": logging.INFO, "info": logging.INFO, "error": logging.WARNING}


@dataclass(frozen=True)
class Notification:
    level: str  # success | info | error
    message: str
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class Notifier:
    def __init__(self, max_items: int = 50) -> None:
        self._items: deque[Notification] = deque(maxlen=max_items)

    def notify(self, level: str, message: str) -> Notification:
        note = Notification(level=level, message=message)
        self._items.append(note)
        logger.log(_LOG_LEVELS.get(level, logging.INFO), "[%s] %s", level, message)
        return note

    def success(self, message: str) -> Notification:
        return self.notify("success", message)

    def info(self, message: str) -> Notification:
        return self.notify("info", message)

    def error(self, message: str) -> Notification:
        return self.notify("error", message)

    def pending(self) -> list[Notification]:
        """Return and clear every queued notification, oldest first."""
        items = list(self._items)
        self._items.clear()
        return items

    def last(self) -> Notification | None:
        return self._items[-1] if self._items else None
