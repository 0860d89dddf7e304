"""Statistical spending-pattern detection.

Three detectors run per category over the analysis window:

- ``spike``: current vs previous calendar month total.
- ``trend``: monotonic growth across the last ``trend_months`` months (only
  when no spike fired for the category).
- ``outlier``: a current-month transaction far from the running mean of the
  category's earlier transactions in the window.

A zero baseline or an empty category yields no pattern; absence of data is not
anomalous.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from datetime import datetime, tzinfo

from .aggregates import (
    RunningStats,
    build_monthly_aggregates,
    effective_category,
    month_start,
    trailing_months,
    year_month,
)
from .logging_setup import get_logger
from .models import PatternSeverity, SpendingPattern, Transaction
from .settings import PatternSettings

_logger = get_logger("spending_guard.patterns")

_KIND_ORDER = {"spike": 0, "trend": 1, "outlier": 2}


def percent_change(current: int, previous: int) -> float | None:
    """``(current - previous) / previous``, or ``None`` when there is no baseline."""

    if previous <= 0:
        return None
    return (current - previous) / previous


class PatternDetector:
    def __init__(
        self,
        settings: PatternSettings,
        *,
        tz: tzinfo,
        fallback_category: str = "Other",
    ) -> None:
        self._settings = settings
        self._tz = tz
        self._fallback = fallback_category
        self._latest: tuple[SpendingPattern, ...] = ()

    @property
    def latest(self) -> tuple[SpendingPattern, ...]:
        """Output of the most recent :meth:`detect` call."""

        return self._latest

    def window_start(self, now: datetime) -> datetime:
        months = trailing_months(now, self._tz, self._window_months())
        return month_start(months[0], self._tz)

    def _window_months(self) -> int:
        return max(2, self._settings.trend_months)

    def detect(self, transactions: Sequence[Transaction], now: datetime) -> list[SpendingPattern]:
        months = trailing_months(now, self._tz, self._window_months())
        current_ym, previous_ym = months[-1], months[-2]
        start = month_start(months[0], self._tz)
        window = sorted(
            (t for t in transactions if t.is_expense and start <= t.timestamp <= now),
            key=lambda t: (t.timestamp, t.id),
        )

        series: dict[str, dict[str, int]] = defaultdict(dict)
        for agg in build_monthly_aggregates(window, self._tz, fallback_category=self._fallback):
            series[agg.category][agg.year_month] = agg.total

        patterns: list[SpendingPattern] = []
        for category in sorted(series):
            totals = series[category]
            current = totals.get(current_ym, 0)
            previous = totals.get(previous_ym, 0)
            spike = self._spike(category, current, previous, now)
            if spike is not None:
                patterns.append(spike)
                continue
            trend = self._trend(category, [totals.get(m, 0) for m in months], now)
            if trend is not None:
                patterns.append(trend)

        patterns.extend(self._outliers(window, current_ym, now))
        patterns.sort(key=lambda p: (p.category, _KIND_ORDER[p.kind]))

        self._latest = tuple(patterns)
        _logger.info(
            "patterns:detected window_start=%s transactions=%d patterns=%d",
            start.date().isoformat(),
            len(window),
            len(patterns),
        )
        return patterns

    def _spike(
        self, category: str, current: int, previous: int, now: datetime
    ) -> SpendingPattern | None:
        pct = percent_change(current, previous)
        if pct is None or pct <= self._settings.spike_threshold:
            return None
        high = pct > self._settings.spike_high_threshold
        severity: PatternSeverity = "high" if high else "medium"
        return SpendingPattern(
            category=category,
            kind="spike",
            severity=severity,
            current_amount=current,
            previous_amount=previous,
            percent_change=pct,
            detected_at=now,
            description=f"{category} spending increased by {pct * 100:.0f}% vs last month",
        )

    def _trend(self, category: str, totals: list[int], now: datetime) -> SpendingPattern | None:
        if len(totals) < 3 or any(t <= 0 for t in totals):
            return None
        if any(b <= a for a, b in zip(totals, totals[1:])):
            return None
        rise = percent_change(totals[-1], totals[0])
        if rise is None or rise <= self._settings.trend_threshold:
            return None
        severity: PatternSeverity = "medium" if rise > self._settings.spike_threshold else "low"
        return SpendingPattern(
            category=category,
            kind="trend",
            severity=severity,
            current_amount=totals[-1],
            previous_amount=totals[0],
            percent_change=rise,
            detected_at=now,
            description=(
                f"{category} spending has risen {len(totals)} months in a row "
                f"({rise * 100:.0f}% overall)"
            ),
        )

    def _outliers(
        self, window: Sequence[Transaction], current_ym: str, now: datetime
    ) -> list[SpendingPattern]:
        s = self._settings
        stats: dict[str, RunningStats] = defaultdict(RunningStats)
        found: list[SpendingPattern] = []
        for tx in window:
            category = effective_category(tx, self._fallback)
            running = stats[category]
            x = float(tx.magnitude)
            if (
                year_month(tx.timestamp, self._tz) == current_ym
                and running.count >= s.outlier_min_samples
                and running.stddev > 0
            ):
                deviation = abs(x - running.mean)
                if deviation > s.outlier_stddev_multiplier * running.stddev:
                    z = deviation / running.stddev
                    severity: PatternSeverity = (
                        "high" if z > s.outlier_high_multiplier else "medium"
                    )
                    mean_minor = round(running.mean)
                    found.append(
                        SpendingPattern(
                            category=category,
                            kind="outlier",
                            severity=severity,
                            current_amount=tx.magnitude,
                            previous_amount=mean_minor,
                            percent_change=(x - running.mean) / running.mean,
                            detected_at=now,
                            description=(
                                f"Unusual {category} transaction: {z:.1f} standard deviations "
                                "from your typical amount"
                            ),
                            transaction_id=tx.id,
                        )
                    )
            running.push(x)
        return found
