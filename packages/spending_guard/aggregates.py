"""Calendar-month helpers and derived aggregates.

Aggregates are recomputed from transactions on every pass and never
persisted. Month boundaries are evaluated in the engine's configured
timezone.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, tzinfo

from .models import MonthlyAggregate, Transaction


def year_month(ts: datetime, tz: tzinfo) -> str:
    local = ts.astimezone(tz)
    return f"{local.year:04d}-{local.month:02d}"


def shift_month(ym: str, delta: int) -> str:
    year, month = (int(p) for p in ym.split("-"))
    index = year * 12 + (month - 1) + delta
    return f"{index // 12:04d}-{index % 12 + 1:02d}"


def month_start(ym: str, tz: tzinfo) -> datetime:
    year, month = (int(p) for p in ym.split("-"))
    return datetime(year, month, 1, tzinfo=tz)


def trailing_months(now: datetime, tz: tzinfo, count: int) -> list[str]:
    """Return ``count`` year-month keys ending at ``now``'s month, oldest first."""

    current = year_month(now, tz)
    return [shift_month(current, -k) for k in reversed(range(count))]


def effective_category(tx: Transaction, fallback: str) -> str:
    return tx.category or fallback


def build_monthly_aggregates(
    transactions: Iterable[Transaction], tz: tzinfo, *, fallback_category: str
) -> list[MonthlyAggregate]:
    """Sum expense magnitudes per ``(category, year_month)``."""

    totals: dict[tuple[str, str], list[int]] = {}
    for tx in transactions:
        if not tx.is_expense:
            continue
        key = (effective_category(tx, fallback_category), year_month(tx.timestamp, tz))
        acc = totals.setdefault(key, [0, 0])
        acc[0] += tx.magnitude
        acc[1] += 1
    return [
        MonthlyAggregate(category=cat, year_month=ym, total=t, count=n)
        for (cat, ym), (t, n) in sorted(totals.items())
    ]


def totals_by_category(aggregates: Sequence[MonthlyAggregate], ym: str) -> dict[str, int]:
    return {a.category: a.total for a in aggregates if a.year_month == ym}


@dataclass(slots=True)
class RunningStats:
    """Welford running mean/variance (population)."""

    count: int = 0
    mean: float = 0.0
    _m2: float = 0.0

    def push(self, x: float) -> None:
        self.count += 1
        delta = x - self.mean
        self.mean += delta / self.count
        self._m2 += delta * (x - self.mean)

    @property
    def variance(self) -> float:
        return self._m2 / self.count if self.count else 0.0

    @property
    def stddev(self) -> float:
        return math.sqrt(self.variance)
