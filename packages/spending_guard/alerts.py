"""Alert rules and the deduplicated active-alert set.

Rules run in a fixed order:

1. over-target budget category -> ``overspending``
2. high-severity spike/outlier pattern -> ``pattern``
3. rapid succession spending in the trailing window -> ``rapid_spending``

Alerts are keyed by ``(type, category)``. A repeated detection refreshes the
existing alert in place; a key whose condition clears is resolved so the next
occurrence starts a fresh alert.

The full pass and the fast path both evaluate ``rapid_spending`` from their
own threads. An evaluation whose ``now`` is older than the last evaluation of
the same alert type is ignored for that type, so a slow full pass cannot
resolve or recreate an alert the fast path has already moved past.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Callable, Iterable, Sequence
from dataclasses import replace
from datetime import datetime, timedelta
from typing import NamedTuple

from .logging_setup import get_logger
from .models import (
    SEVERITY_RANK,
    Alert,
    AlertEvent,
    AlertSeverity,
    AlertType,
    BudgetPlan,
    RapidSpendingBurst,
    SpendingPattern,
    Transaction,
)
from .settings import AlertSettings

_logger = get_logger("spending_guard.alerts")

RAPID_SPENDING_CATEGORY = "all"
_FULL_PASS_TYPES: frozenset[AlertType] = frozenset({"overspending", "pattern", "rapid_spending"})
_FAST_PATH_TYPES: frozenset[AlertType] = frozenset({"rapid_spending"})
_PATTERN_KIND_PREFERENCE = {"spike": 0, "outlier": 1}


def format_money(minor_units: int, symbol: str = "₱") -> str:
    """``1200000`` -> ``"₱12,000.00"``."""

    sign = "-" if minor_units < 0 else ""
    return f"{sign}{symbol}{abs(minor_units) / 100:,.2f}"


def detect_rapid_spending(
    transactions: Iterable[Transaction], now: datetime, settings: AlertSettings
) -> RapidSpendingBurst | None:
    """Return the trailing-window burst when it meets both count and amount thresholds."""

    window_start = now - timedelta(minutes=settings.rapid_window_minutes)
    recent = sorted(
        (t for t in transactions if t.is_expense and window_start <= t.timestamp <= now),
        key=lambda t: (t.timestamp, t.id),
    )
    total = sum(t.magnitude for t in recent)
    if len(recent) < settings.rapid_min_count or total < settings.rapid_amount_threshold:
        return None
    return RapidSpendingBurst(
        transactions=tuple(recent), total=total, window_start=window_start, window_end=now
    )


class _Candidate(NamedTuple):
    category: str
    type: AlertType
    severity: AlertSeverity
    message: str
    suggestion: str

    @property
    def key(self) -> tuple[str, str]:
        return (self.type, self.category)


class AlertManager:
    """Own the active alert set for one user.

    Parameters
    ----------
    settings:
        Severity multipliers and rapid-spending thresholds.
    id_factory:
        Produces alert ids; defaults to random UUID4 hex strings.
    """

    def __init__(
        self,
        settings: AlertSettings,
        *,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._settings = settings
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)
        self._active: dict[tuple[str, str], Alert] = {}
        self._evaluated_at: dict[AlertType, datetime] = {}
        self._lock = threading.Lock()

    @property
    def settings(self) -> AlertSettings:
        return self._settings

    # ---- Public API ------------------------------------------------------------

    def evaluate(
        self,
        patterns: Sequence[SpendingPattern],
        plan: BudgetPlan,
        transactions: Sequence[Transaction],
        now: datetime,
    ) -> list[AlertEvent]:
        """Run all three rules and reconcile the active set."""

        candidates = [
            *self._overspending_candidates(plan),
            *self._pattern_candidates(patterns),
            *self._rapid_candidates(transactions, now),
        ]
        return self._apply(candidates, _FULL_PASS_TYPES, now)

    def evaluate_rapid_spending(
        self, transactions: Sequence[Transaction], now: datetime
    ) -> list[AlertEvent]:
        """Run only the rapid-spending rule (the fast path)."""

        return self._apply(self._rapid_candidates(transactions, now), _FAST_PATH_TYPES, now)

    def active_alerts(self) -> list[Alert]:
        with self._lock:
            alerts = list(self._active.values())
        return sorted(alerts, key=lambda a: (-SEVERITY_RANK[a.severity], a.created_at, a.key))

    def get(self, alert_id: str) -> Alert | None:
        with self._lock:
            for alert in self._active.values():
                if alert.id == alert_id:
                    return alert
        return None

    def acknowledge(self, alert_id: str) -> bool:
        with self._lock:
            for key, alert in self._active.items():
                if alert.id == alert_id:
                    self._active[key] = replace(alert, acknowledged=True)
                    _logger.info("alerts:acknowledged id=%s type=%s", alert_id, alert.type)
                    return True
        return False

    # ---- Rules -----------------------------------------------------------------

    def _overspending_candidates(self, plan: BudgetPlan) -> list[_Candidate]:
        sym = self._settings.currency_symbol
        out: list[_Candidate] = []
        for o in plan.overages:
            high = o.actual > o.target * self._settings.overspend_high_multiplier
            out.append(
                _Candidate(
                    category=o.category,
                    type="overspending",
                    severity="high" if high else "medium",
                    message=(
                        f"You're overspending on {o.category}. Current: "
                        f"{format_money(o.actual, sym)}, Budget: {format_money(o.target, sym)}"
                    ),
                    suggestion=(
                        f"{o.suggestion} Consider reducing {o.category} expenses by "
                        f"{format_money(o.excess, sym)}."
                    ),
                )
            )
        return out

    def _pattern_candidates(self, patterns: Sequence[SpendingPattern]) -> list[_Candidate]:
        chosen: dict[str, SpendingPattern] = {}
        for p in patterns:
            if p.kind not in _PATTERN_KIND_PREFERENCE or p.severity != "high":
                continue
            current = chosen.get(p.category)
            if current is None or (
                _PATTERN_KIND_PREFERENCE[p.kind] < _PATTERN_KIND_PREFERENCE[current.kind]
            ):
                chosen[p.category] = p
        return [
            _Candidate(
                category=category,
                type="pattern",
                severity="high",
                message=p.description,
                suggestion=f"Review recent {category} transactions for unplanned purchases.",
            )
            for category, p in sorted(chosen.items())
        ]

    def _rapid_candidates(
        self, transactions: Sequence[Transaction], now: datetime
    ) -> list[_Candidate]:
        burst = detect_rapid_spending(transactions, now, self._settings)
        if burst is None:
            return []
        sym = self._settings.currency_symbol
        minutes = self._settings.rapid_window_minutes
        return [
            _Candidate(
                category=RAPID_SPENDING_CATEGORY,
                type="rapid_spending",
                severity="critical",
                message=(
                    f"Rapid spending detected: {burst.count} purchases totaling "
                    f"{format_money(burst.total, sym)} in the last {minutes} minutes"
                ),
                suggestion="Pause and review before making more purchases today.",
            )
        ]

    # ---- Reconciliation --------------------------------------------------------

    def _apply(
        self,
        candidates: Sequence[_Candidate],
        evaluated_types: frozenset[AlertType],
        now: datetime,
    ) -> list[AlertEvent]:
        events: list[AlertEvent] = []
        with self._lock:
            current: set[AlertType] = set()
            for t in evaluated_types:
                last = self._evaluated_at.get(t)
                if last is not None and last > now:
                    _logger.info(
                        "alerts:stale_evaluation type=%s now=%s last=%s",
                        t,
                        now.isoformat(),
                        last.isoformat(),
                    )
                    continue
                current.add(t)
                self._evaluated_at[t] = now

            seen: set[tuple[str, str]] = set()
            for c in candidates:
                if c.type not in current or c.key in seen:
                    continue
                seen.add(c.key)
                existing = self._active.get(c.key)
                if existing is None:
                    alert = Alert(
                        id=self._id_factory(),
                        category=c.category,
                        type=c.type,
                        severity=c.severity,
                        message=c.message,
                        suggestion=c.suggestion,
                        created_at=now,
                        updated_at=now,
                    )
                    self._active[c.key] = alert
                    events.append(AlertEvent("created", alert))
                    _logger.info(
                        "alerts:created id=%s type=%s category=%s severity=%s",
                        alert.id,
                        alert.type,
                        alert.category,
                        alert.severity,
                    )
                elif existing.acknowledged:
                    continue
                else:
                    alert = replace(
                        existing,
                        severity=c.severity,
                        message=c.message,
                        suggestion=c.suggestion,
                        updated_at=now,
                    )
                    self._active[c.key] = alert
                    events.append(AlertEvent("refreshed", alert))

            stale = [k for k in self._active if k[0] in current and k not in seen]
            for key in stale:
                resolved = self._active.pop(key)
                _logger.info(
                    "alerts:resolved id=%s type=%s category=%s",
                    resolved.id,
                    resolved.type,
                    resolved.category,
                )
        return events
