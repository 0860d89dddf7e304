"""Notification sinks.

The engine only knows the :class:`~spending_guard.interfaces.NotificationSink`
protocol; delivery (chat, push, e-mail) belongs to the host application.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence

from .interfaces import NotificationSink
from .logging_setup import get_logger
from .models import AlertEvent, Intervention

_logger = get_logger("spending_guard.notifications")


class LoggingNotificationSink:
    """Emit one structured log line per event."""

    def notify_alert(self, event: AlertEvent) -> None:
        a = event.alert
        _logger.info(
            'notify:alert_%s id=%s type=%s category=%s severity=%s message="%s"',
            event.kind,
            a.id,
            a.type,
            a.category,
            a.severity,
            a.message,
        )

    def notify_intervention(self, intervention: Intervention) -> None:
        _logger.warning(
            'notify:intervention id=%s alert_id=%s kind=%s action="%s"',
            intervention.id,
            intervention.alert_id,
            intervention.triggering_pattern,
            intervention.action,
        )


class CollectingNotificationSink:
    """Keep events in memory, optionally forwarding to another sink."""

    def __init__(self, forward_to: NotificationSink | None = None) -> None:
        self._forward = forward_to
        self._alerts: list[AlertEvent] = []
        self._interventions: list[Intervention] = []
        self._lock = threading.Lock()

    @property
    def alert_events(self) -> Sequence[AlertEvent]:
        with self._lock:
            return tuple(self._alerts)

    @property
    def interventions(self) -> Sequence[Intervention]:
        with self._lock:
            return tuple(self._interventions)

    def notify_alert(self, event: AlertEvent) -> None:
        with self._lock:
            self._alerts.append(event)
        if self._forward is not None:
            self._forward.notify_alert(event)

    def notify_intervention(self, intervention: Intervention) -> None:
        with self._lock:
            self._interventions.append(intervention)
        if self._forward is not None:
            self._forward.notify_intervention(intervention)
