"""SQL-backed transaction store.

Reads and annotates the ``sg_transactions``/``sg_accounts`` tables owned by
``libs/db`` through :func:`db.client.session_scope`. Each public operation is
its own short transaction; the engine never holds a session across AI calls.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import cast

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from db.client import create_schema, session_scope
from db.models.finance import SgAccount, SgTransaction

from .logging_setup import get_logger
from .models import Account, AccountKind, Transaction

_logger = get_logger("spending_guard.persistence")


def _as_utc(dt: datetime) -> datetime:
    # SQLite returns naive datetimes even for timezone-aware columns.
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def _to_confidence(value: float) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _row_to_transaction(row: SgTransaction) -> Transaction:
    return Transaction(
        id=row.id,
        timestamp=_as_utc(row.occurred_at),
        amount=int(row.amount),
        raw_description=row.raw_description,
        kind="income" if row.kind == "income" else "expense",
        category=row.category or "",
        subcategory=row.subcategory or "",
        category_confidence=float(row.category_confidence or 0),
        account_id=row.account_id,
    )


def _row_to_account(row: SgAccount) -> Account:
    kind = cast(AccountKind, row.kind)
    return Account(id=row.id, name=row.name, kind=kind, balance=int(row.balance))


class SqlTransactionStore:
    """Transaction source and categorization sink over the shared database."""

    def __init__(self, database_url: str | None = None) -> None:
        self._database_url = database_url

    def create_schema(self) -> None:
        create_schema(database_url=self._database_url)

    # ---- TransactionSource -----------------------------------------------------

    def list_transactions(self, user_id: str, since: datetime) -> list[Transaction]:
        since_utc = _as_utc(since)
        with session_scope(database_url=self._database_url) as session:
            rows = session.scalars(
                select(SgTransaction)
                .where(SgTransaction.user_id == user_id, SgTransaction.occurred_at >= since_utc)
                .order_by(SgTransaction.occurred_at, SgTransaction.id)
            ).all()
            return [_row_to_transaction(r) for r in rows]

    def list_accounts(self, user_id: str) -> list[Account]:
        with session_scope(database_url=self._database_url) as session:
            rows = session.scalars(
                select(SgAccount).where(SgAccount.user_id == user_id).order_by(SgAccount.id)
            ).all()
            return [_row_to_account(r) for r in rows]

    # ---- CategorizationSink ----------------------------------------------------

    def save_categorization(
        self, transaction_id: str, category: str, subcategory: str, confidence: float
    ) -> None:
        with session_scope(database_url=self._database_url) as session:
            result = session.execute(
                update(SgTransaction)
                .where(SgTransaction.id == transaction_id)
                .values(
                    category=category,
                    subcategory=subcategory or None,
                    category_confidence=_to_confidence(confidence),
                    categorized_at=datetime.now(UTC),
                )
            )
            if result.rowcount == 0:
                raise KeyError(f"unknown transaction id: {transaction_id}")

    # ---- Ingestion -------------------------------------------------------------

    def upsert_transactions(self, user_id: str, transactions: Iterable[Transaction]) -> int:
        """Insert or update transactions by id. Existing annotations are preserved
        unless the incoming record carries its own category."""

        n = 0
        with session_scope(database_url=self._database_url) as session:
            for tx in transactions:
                _upsert_one(session, user_id, tx)
                n += 1
        _logger.info("persistence:upsert_transactions user_id=%s count=%d", user_id, n)
        return n

    def upsert_accounts(self, user_id: str, accounts: Iterable[Account]) -> int:
        n = 0
        with session_scope(database_url=self._database_url) as session:
            for acct in accounts:
                row = session.get(SgAccount, acct.id)
                if row is None:
                    row = SgAccount(id=acct.id, user_id=user_id)
                    session.add(row)
                row.name = acct.name
                row.kind = acct.kind
                row.balance = acct.balance
                n += 1
        return n


def _upsert_one(session: Session, user_id: str, tx: Transaction) -> None:
    row = session.get(SgTransaction, tx.id)
    if row is None:
        row = SgTransaction(id=tx.id, user_id=user_id)
        session.add(row)
    row.account_id = tx.account_id
    row.occurred_at = tx.timestamp.astimezone(UTC)
    row.amount = tx.amount
    row.raw_description = tx.raw_description
    row.kind = tx.kind
    if tx.category:
        row.category = tx.category
        row.subcategory = tx.subcategory or None
        row.category_confidence = _to_confidence(tx.category_confidence)
