"""Prompt construction for categorization and budget-tip requests.

This module builds:
- A deterministic JSON serialization of a transaction batch with a fixed
  field order and batch-relative ``idx`` values.
- The system instructions and user prompts for both AI-assisted tasks.

Rows are embedded between ``BEGIN_``/``END_`` markers so the batch is easy to
locate in logs and in test stubs.
"""

from __future__ import annotations

import json
from collections.abc import Sequence

from .models import BudgetOverage, Transaction

TX_FIELD_ORDER: tuple[str, ...] = ("idx", "description", "amount", "date")

BEGIN_TRANSACTIONS = "BEGIN_TRANSACTIONS_JSON\n"
END_TRANSACTIONS = "\nEND_TRANSACTIONS_JSON"
BEGIN_OVERAGES = "BEGIN_OVERAGES_JSON\n"
END_OVERAGES = "\nEND_OVERAGES_JSON"


def format_amount(minor_units: int) -> str:
    """Render minor units as a plain decimal string (``123456`` -> ``"1234.56"``)."""

    sign = "-" if minor_units < 0 else ""
    whole, cents = divmod(abs(minor_units), 100)
    return f"{sign}{whole}.{cents:02d}"


def serialize_batch_to_json(batch: Sequence[Transaction]) -> str:
    """Serialize a batch with field order ``idx, description, amount, date``."""

    arr: list[dict[str, object]] = []
    for idx, tx in enumerate(batch):
        row = {
            "idx": idx,
            "description": tx.raw_description,
            "amount": format_amount(tx.magnitude),
            "date": tx.timestamp.date().isoformat(),
        }
        arr.append({key: row[key] for key in TX_FIELD_ORDER})
    return json.dumps(arr, ensure_ascii=False)


def build_categorization_instructions() -> str:
    return (
        "You categorize personal expense transactions for a household in the Philippines. "
        "Descriptions may mix English and Tagalog. Choose exactly one category per "
        "transaction from the provided list; never invent categories. Output JSON only."
    )


def build_categorization_prompt(batch: Sequence[Transaction], vocabulary: Sequence[str]) -> str:
    categories = ", ".join(vocabulary)
    return (
        f"Allowed categories: {categories}\n\n"
        f"Categorize each of the {len(batch)} transactions below. Respond with a single JSON "
        'object with exactly these keys: "categories" (list of category names), '
        '"confidence" (list of numbers between 0 and 1, or null when unsure), and '
        '"reasoning" (list of short strings). All three lists must have exactly '
        f"{len(batch)} entries, in the same order as the input idx values.\n\n"
        f"{BEGIN_TRANSACTIONS}{serialize_batch_to_json(batch)}{END_TRANSACTIONS}"
    )


def build_tips_instructions() -> str:
    return (
        "You are a practical budgeting coach for Filipino households. Give one short, "
        "concrete, culturally relevant tip per category. Amounts are in Philippine pesos. "
        "Output JSON only."
    )


def build_tips_prompt(overages: Sequence[BudgetOverage], monthly_income: int) -> str:
    rows = [
        {
            "category": o.category,
            "target": format_amount(o.target),
            "actual": format_amount(o.actual),
        }
        for o in overages
    ]
    return (
        f"Monthly income: {format_amount(monthly_income)}\n"
        "These categories are over their monthly budget target. Respond with a JSON object "
        '{"tips": {"<category>": "<one-sentence tip>"}} covering each category once.\n\n'
        f"{BEGIN_OVERAGES}{json.dumps(rows, ensure_ascii=False)}{END_OVERAGES}"
    )


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence (```json ... ```) if present."""

    s = text.strip()
    if s.startswith("```"):
        first_nl = s.find("\n")
        s = s[first_nl + 1 :] if first_nl != -1 else s[3:]
        if s.rstrip().endswith("```"):
            s = s.rstrip()[:-3]
    return s.strip()
