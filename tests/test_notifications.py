from __future__ import annotations

from datetime import timedelta

from spending_guard.alerts import AlertManager
from spending_guard.interfaces import NotificationSink
from spending_guard.notifications import CollectingNotificationSink
from spending_guard.settings import AlertSettings
from tests.helpers.factories import at, expense

NOW = at(2025, 6, 20, 15, 0)


def test_collector_forwards_to_any_sink():
    downstream = CollectingNotificationSink()
    collector = CollectingNotificationSink(forward_to=downstream)
    assert isinstance(downstream, NotificationSink)

    burst = [expense(f"r{i}", NOW - timedelta(minutes=5 - i), 2_000) for i in range(3)]
    [event] = AlertManager(AlertSettings()).evaluate_rapid_spending(burst, NOW)
    collector.notify_alert(event)

    assert collector.alert_events == (event,)
    assert downstream.alert_events == (event,)
    assert downstream.interventions == ()
