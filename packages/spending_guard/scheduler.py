"""Background scheduling of the analysis pipeline.

Two independent periodic tasks run on their own threads:

- full pass (default every 5 minutes): categorize -> detect patterns -> plan
  budget -> evaluate alerts;
- fast path (default every 60 seconds): rapid-spending rule only, plus
  escalation to an :class:`~spending_guard.models.Intervention`.

Each task is single-flight: a tick that arrives while the previous run of the
same task is still going is skipped, never queued. ``stop()`` lets an
in-flight run finish and schedules nothing afterwards.
"""

from __future__ import annotations

import threading
import time
import uuid
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
from typing import Literal

from .alerts import detect_rapid_spending, format_money
from .interfaces import (
    Alerts,
    Categorizes,
    DetectsPatterns,
    NotificationSink,
    Plans,
    TransactionSource,
)
from .logging_setup import get_logger
from .models import Account, Alert, AlertEvent, Intervention, PassReport, Transaction
from .settings import AlertSettings, SchedulerSettings

_logger = get_logger("spending_guard.scheduler")

INTERVENTION_KIND = "immediate_spending_freeze_recommendation"


class InterventionLog:
    """Append-only, thread-safe record of autonomous actions."""

    def __init__(self) -> None:
        self._entries: list[Intervention] = []
        self._lock = threading.Lock()

    def append(self, intervention: Intervention) -> None:
        with self._lock:
            self._entries.append(intervention)

    def entries(self) -> tuple[Intervention, ...]:
        with self._lock:
            return tuple(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class _PeriodicTask:
    """Run ``fn`` at a fixed rate on a daemon thread until ``stop_event`` is set."""

    def __init__(
        self,
        name: str,
        interval: float,
        fn: Callable[[], object],
        stop_event: threading.Event,
        *,
        run_immediately: bool,
    ) -> None:
        self.name = name
        self._interval = interval
        self._fn = fn
        self._stop = stop_event
        self._run_immediately = run_immediately
        self._thread = threading.Thread(
            target=self._loop, name=f"spending-guard-{name}", daemon=True
        )

    def start(self) -> None:
        self._thread.start()

    def join(self, timeout: float | None) -> bool:
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def _loop(self) -> None:
        next_run = time.monotonic() + (0.0 if self._run_immediately else self._interval)
        while not self._stop.is_set():
            delay = next_run - time.monotonic()
            if delay > 0 and self._stop.wait(delay):
                break
            if self._stop.is_set():
                break
            self._fn()
            next_run += self._interval
            now = time.monotonic()
            if next_run <= now:
                missed = int((now - next_run) // self._interval) + 1
                next_run += missed * self._interval
                _logger.warning("scheduler:ticks_skipped task=%s missed=%d", self.name, missed)


class Scheduler:
    """Compose the engine capabilities and drive them on two cadences.

    Parameters
    ----------
    user_id:
        Whose transactions to analyze.
    source:
        Pull-based transaction/account store.
    categorizer, detector, planner, alerts:
        Capability implementations (see :mod:`spending_guard.interfaces`).
    notifier:
        Receives alert events and interventions.
    settings:
        Timer intervals and shutdown timeout.
    alert_settings:
        Needed to size the fast-path window and to describe interventions.
    analysis_start:
        Maps "now" to the earliest timestamp a full pass needs to load.
    declared_income:
        Optional user-declared monthly income (minor units).
    clock:
        Returns the current aware datetime; injectable for tests.
    """

    def __init__(
        self,
        user_id: str,
        *,
        source: TransactionSource,
        categorizer: Categorizes,
        detector: DetectsPatterns,
        planner: Plans,
        alerts: Alerts,
        notifier: NotificationSink,
        settings: SchedulerSettings,
        alert_settings: AlertSettings,
        analysis_start: Callable[[datetime], datetime],
        declared_income: int | None = None,
        clock: Callable[[], datetime] | None = None,
        intervention_log: InterventionLog | None = None,
    ) -> None:
        self._user_id = user_id
        self._source = source
        self._categorizer = categorizer
        self._detector = detector
        self._planner = planner
        self._alerts = alerts
        self._notifier = notifier
        self._settings = settings
        self._alert_settings = alert_settings
        self._analysis_start = analysis_start
        self._declared_income = declared_income
        self._clock = clock or (lambda: datetime.now(UTC))
        self._interventions = intervention_log or InterventionLog()

        self._full_lock = threading.Lock()
        self._fast_lock = threading.Lock()
        self._escalation_lock = threading.Lock()
        self._escalated_alert_ids: set[str] = set()
        self._stop_event = threading.Event()
        self._tasks: list[_PeriodicTask] = []
        self._last_report: PassReport | None = None

    # ---- Introspection ---------------------------------------------------------

    @property
    def state(self) -> Literal["idle", "running"]:
        return "running" if self._full_lock.locked() or self._fast_lock.locked() else "idle"

    @property
    def interventions(self) -> tuple[Intervention, ...]:
        return self._interventions.entries()

    @property
    def last_report(self) -> PassReport | None:
        return self._last_report

    @property
    def is_started(self) -> bool:
        return bool(self._tasks) and not self._stop_event.is_set()

    # ---- Lifecycle -------------------------------------------------------------

    def start(self) -> None:
        if self._tasks:
            raise RuntimeError("scheduler already started")
        self._stop_event.clear()
        s = self._settings
        self._tasks = [
            _PeriodicTask(
                "full-pass",
                s.full_pass_interval_seconds,
                self.run_full_pass,
                self._stop_event,
                run_immediately=s.run_on_start,
            ),
            _PeriodicTask(
                "fast-path",
                s.fast_path_interval_seconds,
                self.run_fast_path,
                self._stop_event,
                run_immediately=s.run_on_start,
            ),
        ]
        for task in self._tasks:
            task.start()
        _logger.info(
            "scheduler:started user_id=%s full_interval_s=%.1f fast_interval_s=%.1f",
            self._user_id,
            s.full_pass_interval_seconds,
            s.fast_path_interval_seconds,
        )

    def stop(self, timeout: float | None = None) -> bool:
        """Signal both tasks to stop and wait for in-flight runs; True when joined."""

        self._stop_event.set()
        limit = self._settings.stop_timeout_seconds if timeout is None else timeout
        joined = all(task.join(limit) for task in self._tasks)
        if not joined:
            _logger.warning("scheduler:stop_timeout timeout_s=%.1f", limit)
        self._tasks = []
        _logger.info("scheduler:stopped user_id=%s", self._user_id)
        return joined

    def wait(self, timeout: float | None = None) -> bool:
        """Block until :meth:`stop` is called (or ``timeout`` elapses)."""

        return self._stop_event.wait(timeout)

    def __enter__(self) -> Scheduler:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    # ---- Passes ----------------------------------------------------------------

    def run_full_pass(self) -> PassReport | None:
        """Run the full pipeline once; ``None`` when skipped or failed."""

        if not self._full_lock.acquire(blocking=False):
            _logger.info("scheduler:full_pass_skipped reason=in_flight")
            return None
        try:
            return self._full_pass()
        except Exception:  # noqa: BLE001
            _logger.exception("scheduler:full_pass_failed user_id=%s", self._user_id)
            return None
        finally:
            self._full_lock.release()

    def run_fast_path(self) -> list[AlertEvent] | None:
        """Run the rapid-spending rule and escalate; ``None`` when skipped or failed."""

        if not self._fast_lock.acquire(blocking=False):
            _logger.info("scheduler:fast_path_skipped reason=in_flight")
            return None
        try:
            return self._fast_path()
        except Exception:  # noqa: BLE001
            _logger.exception("scheduler:fast_path_failed user_id=%s", self._user_id)
            return None
        finally:
            self._fast_lock.release()

    def _full_pass(self) -> PassReport:
        started = self._clock()
        t0 = time.perf_counter()
        since = self._analysis_start(started)
        transactions = self._source.list_transactions(self._user_id, since)
        accounts = self._load_accounts()

        categorized = self._categorizer.categorize(transactions)
        recategorized = sum(1 for a, b in zip(transactions, categorized) if a != b)
        patterns = self._detector.detect(categorized, started)
        plan = self._planner.plan(
            categorized, started, declared_income=self._declared_income, accounts=accounts
        )
        events = self._alerts.evaluate(patterns, plan, categorized, started)
        self._notify_events(events)

        report = PassReport(
            started_at=started,
            finished_at=self._clock(),
            transactions=tuple(categorized),
            patterns=tuple(patterns),
            plan=plan,
            events=tuple(events),
            active_alerts=tuple(self._alerts.active_alerts()),
            recategorized=recategorized,
            accounts=tuple(accounts),
        )
        self._last_report = report
        _logger.info(
            (
                "scheduler:full_pass_done user_id=%s transactions=%d recategorized=%d "
                "patterns=%d events=%d active_alerts=%d latency_ms=%.2f"
            ),
            self._user_id,
            len(categorized),
            recategorized,
            len(patterns),
            len(events),
            len(report.active_alerts),
            (time.perf_counter() - t0) * 1000.0,
        )
        return report

    def _fast_path(self) -> list[AlertEvent]:
        now = self._clock()
        since = now - timedelta(minutes=self._alert_settings.rapid_window_minutes)
        recent = self._source.list_transactions(self._user_id, since)
        events = self._alerts.evaluate_rapid_spending(recent, now)
        self._notify_events(events)
        self._escalate(recent, now)
        return events

    # ---- Escalation ------------------------------------------------------------

    def _escalate(self, recent: Sequence[Transaction], now: datetime) -> None:
        critical = [
            a
            for a in self._alerts.active_alerts()
            if a.type == "rapid_spending" and a.severity == "critical"
        ]
        with self._escalation_lock:
            # Resolved alerts never come back under the same id.
            self._escalated_alert_ids &= {a.id for a in critical}
        for alert in critical:
            with self._escalation_lock:
                if alert.id in self._escalated_alert_ids:
                    continue
                self._escalated_alert_ids.add(alert.id)
            intervention = self._build_intervention(alert, recent, now)
            self._interventions.append(intervention)
            _logger.warning(
                "scheduler:intervention id=%s alert_id=%s kind=%s",
                intervention.id,
                alert.id,
                intervention.triggering_pattern,
            )
            try:
                self._notifier.notify_intervention(intervention)
            except Exception as e:  # noqa: BLE001
                _logger.error(
                    "scheduler:notify_failed kind=intervention id=%s error=%s",
                    intervention.id,
                    e.__class__.__name__,
                )

    def _build_intervention(
        self, alert: Alert, recent: Sequence[Transaction], now: datetime
    ) -> Intervention:
        sym = self._alert_settings.currency_symbol
        burst = detect_rapid_spending(recent, now, self._alert_settings)
        count = burst.count if burst is not None else 0
        total = burst.total if burst is not None else 0
        return Intervention(
            id=uuid.uuid4().hex,
            triggering_pattern=INTERVENTION_KIND,
            action=f"URGENT: {alert.message}. Consider pausing non-essential spending.",
            reasoning=(
                f"Detected rapid spending based on {count} transactions totaling "
                f"{format_money(total, sym)}"
            ),
            expected_impact=(
                f"Potential savings of {format_money(round(total * 0.3), sym)} "
                "if spending is controlled"
            ),
            executed_at=now,
            alert_id=alert.id,
        )

    # ---- Helpers ---------------------------------------------------------------

    def _load_accounts(self) -> list[Account]:
        try:
            return list(self._source.list_accounts(self._user_id))
        except Exception as e:  # noqa: BLE001
            _logger.warning(
                "scheduler:accounts_unavailable user_id=%s error=%s",
                self._user_id,
                e.__class__.__name__,
            )
            return []

    def _notify_events(self, events: Sequence[AlertEvent]) -> None:
        for event in events:
            try:
                self._notifier.notify_alert(event)
            except Exception as e:  # noqa: BLE001
                _logger.error(
                    "scheduler:notify_failed kind=alert_%s id=%s error=%s",
                    event.kind,
                    event.alert.id,
                    e.__class__.__name__,
                )
