"""In-process transaction store.

Implements both the transaction source and the categorization sink. Reads
return fresh lists (copy-on-read), so a consumer iterating a snapshot never
observes annotations written by a concurrent categorization pass.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime

from .models import Account, Transaction


class InMemoryTransactionStore:
    def __init__(self) -> None:
        self._transactions: dict[str, dict[str, Transaction]] = {}
        self._accounts: dict[str, list[Account]] = {}
        self._owner: dict[str, str] = {}
        self._lock = threading.Lock()

    def add_transactions(self, user_id: str, transactions: Iterable[Transaction]) -> int:
        """Insert or replace transactions by id; returns the number written."""

        n = 0
        with self._lock:
            bucket = self._transactions.setdefault(user_id, {})
            for tx in transactions:
                bucket[tx.id] = tx
                self._owner[tx.id] = user_id
                n += 1
        return n

    def set_accounts(self, user_id: str, accounts: Iterable[Account]) -> None:
        with self._lock:
            self._accounts[user_id] = list(accounts)

    def list_transactions(self, user_id: str, since: datetime) -> list[Transaction]:
        with self._lock:
            rows = list(self._transactions.get(user_id, {}).values())
        return sorted((t for t in rows if t.timestamp >= since), key=lambda t: (t.timestamp, t.id))

    def list_accounts(self, user_id: str) -> list[Account]:
        with self._lock:
            return list(self._accounts.get(user_id, []))

    def save_categorization(
        self, transaction_id: str, category: str, subcategory: str, confidence: float
    ) -> None:
        with self._lock:
            user_id = self._owner.get(transaction_id)
            if user_id is None:
                raise KeyError(f"unknown transaction id: {transaction_id}")
            bucket = self._transactions[user_id]
            bucket[transaction_id] = replace(
                bucket[transaction_id],
                category=category,
                subcategory=subcategory,
                category_confidence=confidence,
            )

    def get(self, transaction_id: str) -> Transaction | None:
        with self._lock:
            user_id = self._owner.get(transaction_id)
            if user_id is None:
                return None
            return self._transactions[user_id].get(transaction_id)
