"""Capability and boundary protocols.

Engine components depend on these small structural interfaces instead of on
each other's concrete classes. The scheduler composes one implementation of
each capability; tests substitute plain stub classes.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol, runtime_checkable

from .models import (
    Account,
    Alert,
    AlertEvent,
    BudgetPlan,
    Intervention,
    SpendingPattern,
    Transaction,
)

# ---- Boundaries -----------------------------------------------------------------


@runtime_checkable
class TransactionSource(Protocol):
    def list_transactions(self, user_id: str, since: datetime) -> list[Transaction]: ...

    def list_accounts(self, user_id: str) -> list[Account]: ...


@runtime_checkable
class CategorizationSink(Protocol):
    def save_categorization(
        self, transaction_id: str, category: str, subcategory: str, confidence: float
    ) -> None: ...


@runtime_checkable
class NotificationSink(Protocol):
    def notify_alert(self, event: AlertEvent) -> None: ...

    def notify_intervention(self, intervention: Intervention) -> None: ...


class TextGenerator(Protocol):
    def generate(
        self,
        prompt: str,
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
        instructions: str | None = None,
    ) -> str: ...


# ---- Capabilities ---------------------------------------------------------------


class Categorizes(Protocol):
    def categorize(self, transactions: Sequence[Transaction]) -> list[Transaction]: ...


class DetectsPatterns(Protocol):
    def detect(
        self, transactions: Sequence[Transaction], now: datetime
    ) -> list[SpendingPattern]: ...


class Plans(Protocol):
    def plan(
        self,
        transactions: Sequence[Transaction],
        now: datetime,
        *,
        declared_income: int | None = None,
        accounts: Sequence[Account] = (),
    ) -> BudgetPlan: ...


class Alerts(Protocol):
    def evaluate(
        self,
        patterns: Sequence[SpendingPattern],
        plan: BudgetPlan,
        transactions: Sequence[Transaction],
        now: datetime,
    ) -> list[AlertEvent]: ...

    def evaluate_rapid_spending(
        self, transactions: Sequence[Transaction], now: datetime
    ) -> list[AlertEvent]: ...

    def active_alerts(self) -> list[Alert]: ...
