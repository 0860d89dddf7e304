"""End-to-end: CSV export -> categorize -> patterns -> budget -> alerts -> intervention.

Runs the whole pipeline through :func:`spending_guard.api.analyze_transactions`
with a stubbed OpenAI client, so the categorization batches and the budget-tip
request go through the real gateway (rate limiter, retries, response parsing).
"""

from __future__ import annotations

from datetime import UTC
from pathlib import Path

from spending_guard.api import analyze_transactions
from spending_guard.ingest.utils import load_transactions_from_csv
from spending_guard.notifications import CollectingNotificationSink
from spending_guard.scheduler import INTERVENTION_KIND
from spending_guard.settings import EngineSettings
from tests.helpers.openai_stub import OpenAIStub, StatusError, categorization_calls

SAMPLE = Path(__file__).resolve().parents[1] / "data" / "transactions_sample.csv"


def _relabel(row):
    if row["description"] == "Jollibee Cubao":
        return ("Entertainment", 0.9, "Team outing on a weekend")
    return ("Other", None, "No better guess than the keyword rules")


def test_ai_assisted_pipeline_over_sample_export():
    transactions = load_transactions_from_csv(SAMPLE, tz=UTC)
    stub = OpenAIStub(_relabel, tips={"Transport": "Take the MRT on weekdays and carpool."})
    sink = CollectingNotificationSink()

    result = analyze_transactions(
        transactions, EngineSettings(), notifier=sink, client_factory=stub, sleep=lambda s: None
    )
    report = result.report

    # 11 eligible rows -> batches of 10 and 1, then one tip request.
    assert len(categorization_calls(stub.calls)) == 2
    assert len(stub.calls) == 3

    by_id = {t.id: t for t in report.transactions}
    assert (by_id["jun-food-2"].category, by_id["jun-food-2"].category_confidence) == (
        "Entertainment",
        0.9,
    )
    assert by_id["jun-food-1"].category == "Food"
    assert by_id["jun-gas-1"].subcategory == "fuel"

    plan = report.plan
    assert (plan.monthly_income, plan.income_source) == (3_000_000, "observed")
    assert {o.category for o in plan.overages} == {"Entertainment", "Shopping", "Transport"}
    transport = plan.overage_for("Transport")
    assert transport is not None and transport.suggestion_source == "ai"
    assert plan.overage_for("Shopping").suggestion_source == "static"

    keys = {a.key for a in report.active_alerts}
    assert {
        ("overspending", "Entertainment"),
        ("overspending", "Shopping"),
        ("overspending", "Transport"),
        ("pattern", "Transport"),
        ("rapid_spending", "all"),
    } <= keys
    assert ("overspending", "Food") not in keys

    [intervention] = result.interventions
    assert intervention.triggering_pattern == INTERVENTION_KIND
    assert sink.interventions == (intervention,)
    assert [e.kind for e in result.fast_path_events] == ["refreshed"]


def test_pipeline_survives_an_unavailable_model():
    transactions = load_transactions_from_csv(SAMPLE, tz=UTC)
    # Three attempts for each of the two batches and the tip request.
    stub = OpenAIStub(_relabel, errors=[StatusError(503) for _ in range(9)])

    result = analyze_transactions(
        transactions, EngineSettings(), client_factory=stub, sleep=lambda s: None
    )

    assert len(stub.calls) == 9
    by_id = {t.id: t for t in result.report.transactions}
    assert by_id["jun-food-2"].category == "Food"
    overages = result.report.plan.overages
    assert {o.category for o in overages} == {"Food", "Shopping", "Transport"}
    assert all(o.suggestion_source == "static" for o in overages)
    assert len(result.interventions) == 1
