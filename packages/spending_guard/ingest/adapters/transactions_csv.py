"""Adapter for mapping a simple transactions CSV export to engine records.

CSV header (required keys): ``id, date, amount, description``
Optional keys: ``kind, category, subcategory, confidence, account_id``

Amounts are decimal major units (``1,250.50``, ``-₱300``); they are converted
to signed minor units. When ``kind`` is absent it is inferred from the sign
(negative means expense). Naive dates/datetimes are read in the caller's
timezone.
"""

from __future__ import annotations

import csv
import re
from collections.abc import Iterable, Iterator, Mapping
from datetime import date, datetime, time, tzinfo
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from ...models import Transaction, TransactionKind

REQUIRED_HEADERS: frozenset[str] = frozenset({"id", "date", "amount", "description"})

_CURRENCY_NOISE = re.compile(r"[₱$,\s]|PHP", re.IGNORECASE)


def _clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = re.sub(r"\s+", " ", value.replace("\r", " ").replace("\n", " ")).strip()
    return cleaned if cleaned != "" else None


def parse_amount(value: str | None) -> int | None:
    """``"-1,250.50"`` -> ``-125050``; ``None`` when unparseable."""

    if value is None:
        return None
    s = value.strip()
    negative = s.startswith("(") and s.endswith(")")
    s = _CURRENCY_NOISE.sub("", s.strip("()"))
    if not s:
        return None
    try:
        d = Decimal(s)
    except InvalidOperation:
        return None
    minor = int((d * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return -abs(minor) if negative else minor


def parse_timestamp(value: str | None, tz: tzinfo) -> datetime | None:
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None
    try:
        # Date-only values land at midday so a timezone shift keeps the same day.
        parsed = datetime.combine(date.fromisoformat(s), time(12, 0))
    except ValueError:
        try:
            parsed = datetime.fromisoformat(s.replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def _parse_kind(value: str | None, amount: int) -> TransactionKind | None:
    s = (value or "").strip().lower()
    if not s:
        return "expense" if amount < 0 else "income"
    if s in ("income", "expense"):
        return "income" if s == "income" else "expense"
    return None


def _parse_confidence(value: str | None) -> float | None:
    s = (value or "").strip()
    if not s:
        return None
    try:
        c = float(s)
    except ValueError:
        return None
    return c if 0.0 <= c <= 1.0 else None


def to_transactions(rows: Iterable[Mapping[str, str]], *, tz: tzinfo) -> Iterator[Transaction]:
    """Convert CSV rows to :class:`Transaction` records.

    Raises ``csv.Error`` naming the 1-based data row on the first unusable row.
    """

    for n, row in enumerate(rows, start=1):
        tx_id = (row.get("id") or "").strip()
        description = _clean_text(row.get("description"))
        amount = parse_amount(row.get("amount"))
        ts = parse_timestamp(row.get("date"), tz)
        if not tx_id:
            raise csv.Error(f"row {n}: missing id")
        if description is None:
            raise csv.Error(f"row {n} (id={tx_id!r}): missing description")
        if amount is None:
            raise csv.Error(f"row {n} (id={tx_id!r}): unparseable amount {row.get('amount')!r}")
        if ts is None:
            raise csv.Error(f"row {n} (id={tx_id!r}): unparseable date {row.get('date')!r}")
        kind = _parse_kind(row.get("kind"), amount)
        if kind is None:
            raise csv.Error(f"row {n} (id={tx_id!r}): kind must be income or expense")

        category = _clean_text(row.get("category")) or ""
        confidence = _parse_confidence(row.get("confidence"))
        yield Transaction(
            id=tx_id,
            timestamp=ts,
            amount=amount,
            raw_description=description,
            kind=kind,
            category=category,
            subcategory=_clean_text(row.get("subcategory")) or "",
            # A category supplied without confidence is treated as human-labelled.
            category_confidence=(confidence if confidence is not None else 1.0)
            if category
            else 0.0,
            account_id=_clean_text(row.get("account_id")),
        )
