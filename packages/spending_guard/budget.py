"""Budget planning: bucket allocations, per-category targets and overages.

The numeric plan is always computed deterministically. The AI gateway is only
asked for advisory tip text once overages are known; its output never changes
a number.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta, tzinfo

from . import prompting
from .aggregates import build_monthly_aggregates, totals_by_category, year_month
from .categories import fallback_profile
from .categorization import parse_tips_response
from .errors import ConfigError, InferenceError
from .interfaces import TextGenerator
from .logging_setup import get_logger
from .models import (
    Account,
    BucketAllocation,
    BudgetOverage,
    BudgetPlan,
    CategoryProfile,
    Transaction,
)
from .settings import BudgetSettings

_logger = get_logger("spending_guard.budget")


def observed_income(transactions: Sequence[Transaction], now: datetime, days: int) -> int:
    """Sum of income magnitudes in the trailing ``days`` up to ``now``."""

    since = now - timedelta(days=days)
    return sum(
        t.magnitude for t in transactions if t.kind == "income" and since < t.timestamp <= now
    )


class BudgetPlanner:
    """Derive a :class:`BudgetPlan` from income and current-month spending.

    Parameters
    ----------
    profiles:
        Category profiles; each names exactly one bucket present in
        ``settings.bucket_ratios``.
    settings:
        Bucket ratios, tolerance band, income window and tip options.
    gateway:
        Optional inference gateway used for tip prose only.
    tz:
        Timezone for calendar-month boundaries.
    """

    def __init__(
        self,
        profiles: Sequence[CategoryProfile],
        settings: BudgetSettings,
        *,
        gateway: TextGenerator | None = None,
        tz: tzinfo,
    ) -> None:
        unknown = sorted({p.bucket for p in profiles} - set(settings.bucket_ratios))
        if unknown:
            raise ConfigError(f"category buckets missing from bucket_ratios: {unknown}")
        self._profiles = tuple(profiles)
        self._settings = settings
        self._gateway = gateway
        self._tz = tz
        self._fallback = fallback_profile(self._profiles).name

    def plan(
        self,
        transactions: Sequence[Transaction],
        now: datetime,
        *,
        declared_income: int | None = None,
        accounts: Sequence[Account] = (),
    ) -> BudgetPlan:
        s = self._settings
        declared = declared_income if declared_income is not None else s.declared_monthly_income
        if declared is not None:
            income, source = max(0, declared), "declared"
        else:
            income, source = observed_income(transactions, now, s.income_window_days), "observed"

        ratios = s.normalized_ratios()
        allocations = {
            bucket: BucketAllocation(
                amount=round(income * ratio),
                ratio=ratio,
                categories=tuple(p.name for p in self._profiles if p.bucket == bucket),
            )
            for bucket, ratio in ratios.items()
        }
        targets = {p.name: round(income * p.budget_ratio) for p in self._profiles}

        current_ym = year_month(now, self._tz)
        up_to_now = [t for t in transactions if t.timestamp <= now]
        aggregates = build_monthly_aggregates(
            up_to_now, self._tz, fallback_category=self._fallback
        )
        actuals = totals_by_category(aggregates, current_ym)

        overages = self._overages(targets, actuals)
        if overages and s.ai_tips_enabled and self._gateway is not None:
            overages = self._with_ai_tips(overages, income)

        goal = income * s.emergency_fund_months
        liquid = sum(a.balance for a in accounts if a.is_liquid)
        plan = BudgetPlan(
            monthly_income=income,
            income_source=source,
            allocations=allocations,
            per_category_targets=targets,
            category_actuals=actuals,
            overages=tuple(overages),
            emergency_fund_goal=goal,
            emergency_fund_gap=max(0, goal - liquid),
            generated_at=now,
        )
        _logger.info(
            "budget:planned income=%d source=%s categories=%d overages=%d",
            income,
            source,
            len(actuals),
            len(overages),
        )
        return plan

    def _overages(self, targets: dict[str, int], actuals: dict[str, int]) -> list[BudgetOverage]:
        band = 1.0 + self._settings.tolerance
        by_name = {p.name: p for p in self._profiles}
        out: list[BudgetOverage] = []
        for category in sorted(actuals):
            actual = actuals[category]
            target = targets.get(category, 0)
            if target <= 0 or actual <= target * band:
                continue
            profile = by_name.get(category)
            tip = profile.tips[0] if profile is not None and profile.tips else ""
            out.append(
                BudgetOverage(
                    category=category,
                    target=target,
                    actual=actual,
                    suggestion=tip or f"Review your {category} spending this month.",
                )
            )
        return out

    def _with_ai_tips(self, overages: list[BudgetOverage], income: int) -> list[BudgetOverage]:
        assert self._gateway is not None
        try:
            text = self._gateway.generate(
                prompting.build_tips_prompt(overages, income),
                instructions=prompting.build_tips_instructions(),
            )
            tips = parse_tips_response(
                text,
                categories=[o.category for o in overages],
                max_chars=self._settings.max_tip_chars,
            )
        except InferenceError as e:
            _logger.warning(
                "budget:tips_fallback overages=%d error=%s",
                len(overages),
                e.__class__.__name__,
            )
            return overages
        return [
            BudgetOverage(o.category, o.target, o.actual, tips[o.category], "ai")
            if o.category in tips
            else o
            for o in overages
        ]
