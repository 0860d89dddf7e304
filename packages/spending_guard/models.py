"""Data models and type aliases for ``spending_guard``.

Value records are frozen, slotted dataclasses; every update produces a new
instance via :func:`dataclasses.replace`. Amounts are integers in minor
currency units (centavos) throughout. :class:`CategoryProfile` is a Pydantic
model because it is loaded from external configuration and must be validated.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, field_validator

# ---------------------------------------------------------------------------
# Vocabularies
# ---------------------------------------------------------------------------

type TransactionKind = Literal["income", "expense"]
type Bucket = Literal["needs", "wants", "savings"]
type PatternKind = Literal["spike", "trend", "outlier"]
type PatternSeverity = Literal["low", "medium", "high"]
type AlertType = Literal["overspending", "pattern", "rapid_spending"]
type AlertSeverity = Literal["low", "medium", "high", "critical"]
type AlertEventKind = Literal["created", "refreshed"]
type AccountKind = Literal["bank", "e-wallet", "cash", "credit", "investment"]

LIQUID_ACCOUNT_KINDS: frozenset[str] = frozenset({"bank", "e-wallet", "cash"})

SEVERITY_RANK: Mapping[str, int] = {"low": 0, "medium": 1, "high": 2, "critical": 3}


# ---------------------------------------------------------------------------
# Store-owned records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Transaction:
    """A single ledger entry as seen by the engine.

    Only ``category``, ``subcategory`` and ``category_confidence`` are ever
    rewritten by the engine (by the categorizer). A confidence of ``1.0``
    marks a human-confirmed label.
    """

    id: str
    timestamp: datetime
    amount: int
    raw_description: str
    kind: TransactionKind
    category: str = ""
    subcategory: str = ""
    category_confidence: float = 0.0
    account_id: str | None = None

    @property
    def magnitude(self) -> int:
        return abs(self.amount)

    @property
    def is_expense(self) -> bool:
        return self.kind == "expense"

    @property
    def is_categorized(self) -> bool:
        return bool(self.category)

    def with_category(self, category: str, subcategory: str, confidence: float) -> Transaction:
        return replace(
            self,
            category=category,
            subcategory=subcategory,
            category_confidence=confidence,
        )


@dataclass(frozen=True, slots=True)
class Account:
    id: str
    name: str
    kind: AccountKind
    balance: int

    @property
    def is_liquid(self) -> bool:
        return self.kind in LIQUID_ACCOUNT_KINDS


# ---------------------------------------------------------------------------
# Static configuration
# ---------------------------------------------------------------------------


class CategoryProfile(BaseModel):
    """Keyword rules, bucket assignment and budget share for one category."""

    model_config = ConfigDict(extra="forbid", frozen=True, str_strip_whitespace=True)

    name: str
    keywords: tuple[str, ...] = ()
    subcategories: dict[str, tuple[str, ...]] = {}
    bucket: Bucket
    budget_ratio: float = 0.0
    tips: tuple[str, ...] = ()
    fallback: bool = False

    @field_validator("name")
    @classmethod
    def _name_non_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("category name must be non-empty")
        return v

    @field_validator("keywords")
    @classmethod
    def _normalize_keywords(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        # Matching is done against lower-cased descriptions.
        return tuple(dict.fromkeys(k.strip().lower() for k in v if k.strip()))

    @field_validator("subcategories")
    @classmethod
    def _normalize_subcategories(
        cls, v: dict[str, tuple[str, ...]]
    ) -> dict[str, tuple[str, ...]]:
        out: dict[str, tuple[str, ...]] = {}
        for sub, words in v.items():
            cleaned = tuple(dict.fromkeys(w.strip().lower() for w in words if w.strip()))
            if sub.strip() and cleaned:
                out[sub.strip()] = cleaned
        return out

    @field_validator("budget_ratio")
    @classmethod
    def _ratio_in_range(cls, v: float) -> float:
        if 0.0 <= v <= 1.0:
            return v
        raise ValueError("budget_ratio must be in [0,1]")


# ---------------------------------------------------------------------------
# Derived analysis records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MonthlyAggregate:
    category: str
    year_month: str
    total: int
    count: int


@dataclass(frozen=True, slots=True)
class SpendingPattern:
    category: str
    kind: PatternKind
    severity: PatternSeverity
    current_amount: int
    previous_amount: int
    percent_change: float
    detected_at: datetime
    description: str
    # Set for outliers: the transaction that triggered the pattern.
    transaction_id: str | None = None


@dataclass(frozen=True, slots=True)
class BucketAllocation:
    amount: int
    ratio: float
    categories: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class BudgetOverage:
    category: str
    target: int
    actual: int
    suggestion: str
    suggestion_source: Literal["static", "ai"] = "static"

    @property
    def ratio(self) -> float:
        return self.actual / self.target if self.target else 0.0

    @property
    def excess(self) -> int:
        return max(0, self.actual - self.target)


@dataclass(frozen=True, slots=True)
class BudgetPlan:
    monthly_income: int
    income_source: Literal["declared", "observed"]
    allocations: Mapping[str, BucketAllocation]
    per_category_targets: Mapping[str, int]
    category_actuals: Mapping[str, int]
    overages: tuple[BudgetOverage, ...]
    emergency_fund_goal: int
    emergency_fund_gap: int
    generated_at: datetime

    def overage_for(self, category: str) -> BudgetOverage | None:
        for o in self.overages:
            if o.category == category:
                return o
        return None


@dataclass(frozen=True, slots=True)
class Alert:
    id: str
    category: str
    type: AlertType
    severity: AlertSeverity
    message: str
    suggestion: str
    created_at: datetime
    updated_at: datetime
    acknowledged: bool = False

    @property
    def key(self) -> tuple[str, str]:
        return (self.type, self.category)


@dataclass(frozen=True, slots=True)
class AlertEvent:
    kind: AlertEventKind
    alert: Alert


@dataclass(frozen=True, slots=True)
class RapidSpendingBurst:
    transactions: tuple[Transaction, ...]
    total: int
    window_start: datetime
    window_end: datetime

    @property
    def count(self) -> int:
        return len(self.transactions)


@dataclass(frozen=True, slots=True)
class Intervention:
    """Autonomous action recorded for audit. Never mutated after creation."""

    id: str
    triggering_pattern: str
    action: str
    reasoning: str
    expected_impact: str
    executed_at: datetime
    alert_id: str


@dataclass(frozen=True, slots=True)
class PassReport:
    """Summary of one full analysis pass."""

    started_at: datetime
    finished_at: datetime
    transactions: tuple[Transaction, ...]
    patterns: tuple[SpendingPattern, ...]
    plan: BudgetPlan
    events: tuple[AlertEvent, ...]
    active_alerts: tuple[Alert, ...]
    recategorized: int = 0
    accounts: tuple[Account, ...] = field(default_factory=tuple)
