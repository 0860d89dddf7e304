from __future__ import annotations

from datetime import timedelta
from itertools import count

import pytest

from spending_guard.alerts import AlertManager, detect_rapid_spending, format_money
from spending_guard.models import BudgetOverage, BudgetPlan, SpendingPattern
from spending_guard.settings import AlertSettings
from tests.helpers.factories import at, expense, income, pesos

NOW = at(2025, 6, 20, 15, 0)


def _manager() -> AlertManager:
    ids = count(1)
    return AlertManager(AlertSettings(), id_factory=lambda: f"alert-{next(ids)}")


def _plan(*overages: BudgetOverage) -> BudgetPlan:
    return BudgetPlan(
        monthly_income=pesos(30_000),
        income_source="declared",
        allocations={},
        per_category_targets={o.category: o.target for o in overages},
        category_actuals={o.category: o.actual for o in overages},
        overages=tuple(overages),
        emergency_fund_goal=0,
        emergency_fund_gap=0,
        generated_at=NOW,
    )


def _pattern(category: str, kind: str, severity: str) -> SpendingPattern:
    return SpendingPattern(
        category=category,
        kind=kind,  # type: ignore[arg-type]
        severity=severity,  # type: ignore[arg-type]
        current_amount=pesos(5_000),
        previous_amount=pesos(2_000),
        percent_change=1.5,
        detected_at=NOW,
        description=f"{category} {kind}",
    )


def _burst(n: int, each: float, start_minutes_ago: int = 10) -> list:
    return [
        expense(f"r{i}", NOW - timedelta(minutes=start_minutes_ago - i), each, "shopee")
        for i in range(n)
    ]


FOOD_OVERAGE = BudgetOverage("Food", pesos(9_000), pesos(12_000), "Cook at home.")


# ---- Overspending ----------------------------------------------------------------


def test_food_overspending_scenario_is_one_medium_alert():
    events = _manager().evaluate([], _plan(FOOD_OVERAGE), [], NOW)

    [event] = events
    assert event.kind == "created"
    alert = event.alert
    assert (alert.type, alert.category, alert.severity) == ("overspending", "Food", "medium")
    assert alert.message == "You're overspending on Food. Current: ₱12,000.00, Budget: ₱9,000.00"
    assert alert.suggestion.startswith("Cook at home.")
    assert "₱3,000.00" in alert.suggestion


def test_overspending_beyond_high_multiplier_is_high():
    overage = BudgetOverage("Shopping", pesos(2_400), pesos(4_000), "Wait 48 hours.")
    [event] = _manager().evaluate([], _plan(overage), [], NOW)
    assert event.alert.severity == "high"


# ---- Pattern alerts ------------------------------------------------------------


def test_only_high_spikes_and_outliers_raise_pattern_alerts():
    patterns = [
        _pattern("Transport", "spike", "high"),
        _pattern("Food", "spike", "medium"),
        _pattern("Utilities", "trend", "medium"),
        _pattern("Health", "outlier", "high"),
    ]
    events = _manager().evaluate(patterns, _plan(), [], NOW)
    assert sorted((e.alert.type, e.alert.category) for e in events) == [
        ("pattern", "Health"),
        ("pattern", "Transport"),
    ]
    assert all(e.alert.severity == "high" for e in events)


def test_spike_and_outlier_in_one_category_yield_one_alert():
    patterns = [_pattern("Food", "outlier", "high"), _pattern("Food", "spike", "high")]
    [event] = _manager().evaluate(patterns, _plan(), [], NOW)
    assert event.alert.message == "Food spike"


# ---- Rapid spending ------------------------------------------------------------


def test_rapid_spending_fires_once_per_window():
    manager = _manager()
    txs = _burst(3, 5_000 / 3)

    first = manager.evaluate_rapid_spending(txs, NOW)
    [created] = first
    assert created.kind == "created"
    assert (created.alert.type, created.alert.severity) == ("rapid_spending", "critical")
    assert created.alert.category == "all"

    txs.append(expense("r4", NOW - timedelta(minutes=1), 200, "lazada"))
    second = manager.evaluate_rapid_spending(txs, NOW)

    assert [e.kind for e in second] == ["refreshed"]
    assert second[0].alert.id == created.alert.id
    assert "4 purchases" in second[0].alert.message
    assert len(manager.active_alerts()) == 1


def test_rapid_spending_threshold_is_inclusive():
    txs = [
        expense("a", NOW - timedelta(minutes=9), 2_000),
        expense("b", NOW - timedelta(minutes=5), 2_000),
        expense("c", NOW - timedelta(minutes=1), 1_000),
    ]
    burst = detect_rapid_spending(txs, NOW, AlertSettings())
    assert burst is not None
    assert burst.total == pesos(5_000)
    assert burst.count == 3


@pytest.mark.parametrize(
    "txs",
    [
        _burst(2, 4_000),  # too few purchases
        _burst(3, 1_000),  # too little money
        [expense("old", NOW - timedelta(minutes=90), 9_000)] + _burst(2, 2_000),
        [income(f"i{i}", NOW - timedelta(minutes=i), 9_000) for i in range(3)],
    ],
)
def test_rapid_spending_below_thresholds_does_not_fire(txs):
    assert _manager().evaluate_rapid_spending(txs, NOW) == []


# ---- Active set reconciliation -------------------------------------------------


def test_reevaluating_unchanged_inputs_is_idempotent():
    manager = _manager()
    patterns = [_pattern("Transport", "spike", "high")]
    txs = _burst(3, 2_000)

    first = manager.evaluate(patterns, _plan(FOOD_OVERAGE), txs, NOW)
    keys_first = {a.key: a.id for a in manager.active_alerts()}
    second = manager.evaluate(patterns, _plan(FOOD_OVERAGE), txs, NOW + timedelta(minutes=5))
    keys_second = {a.key: a.id for a in manager.active_alerts()}

    assert {e.kind for e in first} == {"created"}
    assert {e.kind for e in second} == {"refreshed"}
    assert keys_first == keys_second
    assert set(keys_first) == {
        ("overspending", "Food"),
        ("pattern", "Transport"),
        ("rapid_spending", "all"),
    }


def test_refresh_updates_in_place():
    manager = _manager()
    manager.evaluate([], _plan(FOOD_OVERAGE), [], NOW)
    worse = BudgetOverage("Food", pesos(9_000), pesos(15_000), "Cook at home.")
    later = NOW + timedelta(hours=1)

    [event] = manager.evaluate([], _plan(worse), [], later)

    assert event.kind == "refreshed"
    assert event.alert.severity == "high"
    assert event.alert.created_at == NOW
    assert event.alert.updated_at == later


def test_cleared_condition_resolves_and_next_occurrence_is_new():
    manager = _manager()
    [first] = manager.evaluate([], _plan(FOOD_OVERAGE), [], NOW)
    assert manager.evaluate([], _plan(), [], NOW) == []
    assert manager.active_alerts() == []

    [again] = manager.evaluate([], _plan(FOOD_OVERAGE), [], NOW)
    assert again.kind == "created"
    assert again.alert.id != first.alert.id


def test_fast_path_leaves_full_pass_alerts_alone():
    manager = _manager()
    manager.evaluate([], _plan(FOOD_OVERAGE), [], NOW)
    manager.evaluate_rapid_spending([], NOW)
    assert [a.key for a in manager.active_alerts()] == [("overspending", "Food")]


def test_older_full_pass_leaves_newer_rapid_alert_alone():
    manager = _manager()
    later = NOW + timedelta(minutes=1)
    [created] = manager.evaluate_rapid_spending(_burst(3, 2_000), later)

    # Loaded before the burst landed: no rapid candidate, evaluated at an older time.
    events = manager.evaluate([], _plan(FOOD_OVERAGE), [], NOW)

    assert [(e.kind, e.alert.type) for e in events] == [("created", "overspending")]
    assert [a.key for a in manager.active_alerts()] == [
        ("rapid_spending", "all"),
        ("overspending", "Food"),
    ]
    kept = manager.get(created.alert.id)
    assert kept is not None and kept.updated_at == later


def test_acknowledged_alert_is_not_refreshed():
    manager = _manager()
    [event] = manager.evaluate([], _plan(FOOD_OVERAGE), [], NOW)
    assert manager.acknowledge(event.alert.id)

    assert manager.evaluate([], _plan(FOOD_OVERAGE), [], NOW) == []
    stored = manager.get(event.alert.id)
    assert stored is not None and stored.acknowledged
    assert manager.acknowledge("missing") is False


def test_active_alerts_ordered_by_severity():
    manager = _manager()
    manager.evaluate([], _plan(FOOD_OVERAGE), _burst(3, 2_000), NOW)
    assert [a.severity for a in manager.active_alerts()] == ["critical", "medium"]


def test_format_money():
    assert format_money(pesos(12_000)) == "₱12,000.00"
    assert format_money(-5) == "-₱0.05"
    assert format_money(100, "PHP ") == "PHP 1.00"
