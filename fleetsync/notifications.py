# =============================================================================
# fleetsync -- Notification Emitter
# =============================================================================
#
# Bounded, most-recent-first notification feed. Each emitted notification is
# also handed to the host's alert sink as an ephemeral Alert: critical alerts
# stay until dismissed, everything else auto-dismisses after a fixed delay.
# =============================================================================

from __future__ import annotations

import time
import uuid
from typing import Callable

from ._logging import logger
from .constants import ALERT_DURATION, NOTIFICATION_LIMIT
from .events import Signal
from .types import Alert, Notification, NotificationCategory, Severity

AlertSink = Callable[[Alert], object]


class NotificationCenter:
    """Notification feed for one console session.

    Args:
        limit: Maximum notifications retained; older ones are pruned.
        alert_duration: Seconds non-critical alerts stay visible.
        alert_sink: Receives an :class:`Alert` per emitted notification.
        clock: Returns epoch seconds.
    """

    def __init__(
        self,
        *,
        limit: int = NOTIFICATION_LIMIT,
        alert_duration: float = ALERT_DURATION,
        alert_sink: AlertSink | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if limit <= 0:
            raise ValueError("limit must be positive")
        self._limit = limit
        self._alert_duration = alert_duration
        self._alert_sink = alert_sink
        self._clock = clock
        self._items: list[Notification] = []
        self.changed: Signal[list[Notification]] = Signal("notifications.changed")

    # -- Readers --------------------------------------------------------------

    @property
    def notifications(self) -> list[Notification]:
        return list(self._items)

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._items if not n.read)

    def unread(self) -> list[Notification]:
        return [n for n in self._items if not n.read]

    def recent(self, count: int = 10) -> list[Notification]:
        return self._items[:count]

    def __len__(self) -> int:
        return len(self._items)

    # -- Emit -----------------------------------------------------------------

    def emit(
        self,
        category: NotificationCategory,
        severity: Severity,
        title: str,
        message: str,
        *,
        device_id: str | None = None,
        device_group: str | None = None,
        sitename: str | None = None,
    ) -> Notification:
        notification = Notification(
            id=uuid.uuid4().hex,
            category=category,
            severity=severity,
            title=title,
            message=message,
            timestamp=self._clock(),
            device_id=device_id,
            device_group=device_group,
            sitename=sitename,
        )
        self._items.insert(0, notification)
        del self._items[self._limit:]
        self._changed()

        if self._alert_sink is not None:
            duration = None if severity == Severity.CRITICAL else self._alert_duration
            try:
                self._alert_sink(Alert(title, message, severity, duration))
            except Exception:
                logger.exception("Alert sink failed for %r", title)
        return notification

    # -- Read state -----------------------------------------------------------

    def mark_read(self, notification_id: str) -> bool:
        for n in self._items:
            if n.id == notification_id:
                if not n.read:
                    n.read = True
                    self._changed()
                return True
        return False

    def mark_all_read(self) -> None:
        if any(not n.read for n in self._items):
            for n in self._items:
                n.read = True
            self._changed()

    def remove(self, notification_id: str) -> bool:
        for i, n in enumerate(self._items):
            if n.id == notification_id:
                del self._items[i]
                self._changed()
                return True
        return False

    def clear(self) -> None:
        if self._items:
            self._items.clear()
            self._changed()

    def _changed(self) -> None:
        self.changed.emit(list(self._items))
