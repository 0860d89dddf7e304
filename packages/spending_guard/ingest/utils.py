"""Ingest utilities shared by CLI commands.

Exposes a single helper to load engine transactions from a CSV file with the
header layout described in :mod:`spending_guard.ingest.adapters.transactions_csv`.
"""

from __future__ import annotations

import csv
from datetime import tzinfo
from os import PathLike
from pathlib import Path

from ..models import Transaction
from .adapters.transactions_csv import REQUIRED_HEADERS, to_transactions


def load_transactions_from_csv(csv_path: str | PathLike[str], *, tz: tzinfo) -> list[Transaction]:
    """Read ``csv_path`` and return transactions in file order.

    Header names are matched case-insensitively after trimming. Raises
    ``csv.Error`` on a missing header, missing required columns, or an
    unusable row.
    """

    p = Path(csv_path)
    with p.open(encoding="utf-8-sig", newline="") as f:
        reader = csv.DictReader(f)
        if not reader.fieldnames:
            raise csv.Error(f"CSV appears to have no header row: {csv_path}")
        reader.fieldnames = [h.strip().lower() for h in reader.fieldnames]
        missing = sorted(REQUIRED_HEADERS - set(reader.fieldnames))
        if missing:
            raise csv.Error("CSV header mismatch. Missing columns: " + ", ".join(missing))
        transactions = list(to_transactions(reader, tz=tz))

    seen: set[str] = set()
    for tx in transactions:
        if tx.id in seen:
            raise csv.Error(f"duplicate transaction id: {tx.id!r}")
        seen.add(tx.id)
    return transactions


__all__ = ["load_transactions_from_csv"]
