from __future__ import annotations

from datetime import timedelta
from typing import Any

import pytest

from spending_guard.categories import default_profiles
from spending_guard.categorize import Categorizer, rule_categorize
from spending_guard.errors import ExhaustedInferenceError
from spending_guard.gateway import AIGateway
from spending_guard.memory_store import InMemoryTransactionStore
from spending_guard.settings import CategorizerSettings, GatewaySettings
from tests.helpers.factories import at, expense
from tests.helpers.openai_stub import OpenAIStub, categorization_calls, extract_batch

PROFILES = default_profiles()
SETTINGS = CategorizerSettings()


class AlwaysExhausted:
    def __init__(self) -> None:
        self.calls = 0

    def generate(self, prompt: str, **kwargs: Any) -> str:
        self.calls += 1
        raise ExhaustedInferenceError("forced", attempts=3)


class RecordingSink:
    def __init__(self, fail: bool = False) -> None:
        self.saved: list[tuple[str, str, str, float]] = []
        self._fail = fail

    def save_categorization(
        self, transaction_id: str, category: str, subcategory: str, confidence: float
    ) -> None:
        if self._fail:
            raise RuntimeError("store unavailable")
        self.saved.append((transaction_id, category, subcategory, confidence))


def _ai_categorizer(stub: OpenAIStub, sleeps: list[float], **overrides: Any) -> Categorizer:
    gateway = AIGateway(GatewaySettings(), client_factory=stub, sleep=sleeps.append)
    return Categorizer(
        PROFILES,
        CategorizerSettings(**overrides),
        gateway=gateway,
        sleep=sleeps.append,
    )


# ---- Rule pass ---------------------------------------------------------------


def test_rule_keyword_match_sets_subcategory_and_reasoning():
    m = rule_categorize("Jollibee lunch with team", -35000, PROFILES, SETTINGS)
    assert m.category == "Food"
    assert m.subcategory == "dining"
    assert m.confidence == pytest.approx(0.75)
    assert m.reasoning == 'Matched keyword "jollibee"'


def test_rule_keywords_are_case_insensitive_tagalog():
    m = rule_categorize("BAYAD SA KURYENTE", -250000, PROFILES, SETTINGS)
    assert m.category == "Utilities"
    assert m.subcategory == "electricity"


def test_rule_falls_back_to_other_with_default_confidence():
    m = rule_categorize("XJ-4471 POS", -10000, PROFILES, SETTINGS)
    assert m.category == "Other"
    assert m.subcategory == ""
    assert m.confidence == pytest.approx(0.6)
    assert m.reasoning == "Default categorization"


def test_rule_material_amount_raises_default_confidence():
    m = rule_categorize("XJ-4471 POS", -1_500_000, PROFILES, SETTINGS)
    assert m.category == "Other"
    assert m.confidence == pytest.approx(0.65)

    keyword = rule_categorize("Meralco bill", -1_500_000, PROFILES, SETTINGS)
    assert keyword.confidence == pytest.approx(0.75)


def test_rule_pass_is_deterministic():
    descriptions = ["grab to office", "Shopee order", "padala kay nanay", "random thing"]
    first = [rule_categorize(d, -50000, PROFILES, SETTINGS) for d in descriptions]
    second = [rule_categorize(d, -50000, PROFILES, SETTINGS) for d in descriptions]
    assert first == second

    c = Categorizer(PROFILES, SETTINGS)
    txs = [expense(f"t{i}", at(2025, 3, 1 + i), 500, d) for i, d in enumerate(descriptions)]
    assert c.categorize(txs) == c.categorize(txs)


# ---- Hybrid pass ---------------------------------------------------------------


def test_every_transaction_is_categorized_when_inference_is_exhausted():
    gateway = AlwaysExhausted()
    sleeps: list[float] = []
    c = Categorizer(PROFILES, SETTINGS, gateway=gateway, sleep=sleeps.append)
    descriptions = ["jollibee", "unknown merchant", "meralco", "lazada", "zz"] * 4
    txs = [
        expense(f"t{i}", at(2025, 3, 1) + timedelta(minutes=i), 100 + i, d)
        for i, d in enumerate(descriptions)
    ]

    out = c.categorize(txs)

    assert len(out) == 20
    assert all(t.category for t in out)
    assert [t.id for t in out] == [t.id for t in txs]
    expected = [rule_categorize(t.raw_description, t.amount, PROFILES, SETTINGS) for t in txs]
    assert [t.category for t in out] == [m.category for m in expected]
    # Two batches of 10, one inter-batch pause.
    assert gateway.calls == 2
    assert sleeps == [1.0]


def test_ai_decision_overrides_rule_result_and_is_saved():
    def decide(item: dict[str, Any]) -> tuple[str, float | None, str]:
        if "ZALORA" in item["description"].upper():
            return "Shopping", 0.93, "online fashion store"
        return "Other", 0.5, "unclear"

    stub = OpenAIStub(decide)
    sleeps: list[float] = []
    sink = RecordingSink()
    gateway = AIGateway(GatewaySettings(), client_factory=stub, sleep=sleeps.append)
    c = Categorizer(PROFILES, SETTINGS, gateway=gateway, sink=sink, sleep=sleeps.append)
    txs = [expense("t1", at(2025, 3, 2), 1999, "PAYMENT ZLR*ZALORA PH")]

    [out] = c.categorize(txs)

    assert out.category == "Shopping"
    assert out.subcategory == "online"
    assert out.category_confidence == pytest.approx(0.93)
    assert sink.saved == [("t1", "Shopping", "online", pytest.approx(0.93))]
    batch = extract_batch(stub.calls[0]["input"])
    assert batch == [
        {
            "idx": 0,
            "description": "PAYMENT ZLR*ZALORA PH",
            "amount": "1999.00",
            "date": "2025-03-02",
        }
    ]


def test_null_confidence_keeps_rule_result():
    stub = OpenAIStub(lambda item: ("Shopping", None, "not sure"))
    c = _ai_categorizer(stub, [])
    [out] = c.categorize([expense("t1", at(2025, 3, 2), 120, "Jollibee")])
    assert out.category == "Food"
    assert out.category_confidence == pytest.approx(0.75)


@pytest.mark.parametrize(
    "raw",
    [
        # lists shorter than the batch
        '{"categories": ["Food"], "confidence": [0.9], "reasoning": ["x"]}',
        # category outside the vocabulary
        '{"categories": ["Groceries", "Food"], "confidence": [0.9, 0.9], "reasoning": ["a", "b"]}',
        # not JSON at all
        "I think these are food purchases.",
    ],
)
def test_malformed_ai_output_falls_back_for_whole_batch(raw: str):
    stub = OpenAIStub(raw_output=raw)
    c = _ai_categorizer(stub, [])
    txs = [
        expense("t1", at(2025, 3, 2), 120, "mystery vendor"),
        expense("t2", at(2025, 3, 3), 80, "grab ride"),
    ]

    out = c.categorize(txs)

    assert [t.category for t in out] == ["Other", "Transport"]
    assert [t.category_confidence for t in out] == [pytest.approx(0.6), pytest.approx(0.75)]


def test_code_fenced_json_is_accepted():
    raw = (
        "```json\n"
        '{"categories": ["Health"], "confidence": [0.88], "reasoning": ["clinic"]}\n'
        "```"
    )
    c = _ai_categorizer(OpenAIStub(raw_output=raw), [])
    [out] = c.categorize([expense("t1", at(2025, 3, 2), 900, "St. Luke's clinic")])
    assert out.category == "Health"
    assert out.category_confidence == pytest.approx(0.88)


def test_confirmed_labels_are_not_reevaluated():
    stub = OpenAIStub(lambda item: ("Entertainment", 0.99, "override"))
    c = _ai_categorizer(stub, [])
    confirmed = expense("t1", at(2025, 3, 1), 100, "jollibee", category="Food", confidence=1.0)
    weak = expense("t2", at(2025, 3, 2), 100, "netflix", category="Other", confidence=0.6)

    out = c.categorize([confirmed, weak])

    assert out[0] is confirmed
    assert out[1].category == "Entertainment"
    [call] = categorization_calls(stub.calls)
    assert [row["description"] for row in extract_batch(call["input"])] == ["netflix"]


def test_unknown_existing_category_is_reevaluated():
    c = Categorizer(PROFILES, SETTINGS)
    tx = expense("t1", at(2025, 3, 1), 100, "meralco", category="Bills", confidence=1.0)
    [out] = c.categorize([tx])
    assert out.category == "Utilities"


def test_lower_confidence_proposal_keeps_existing_label():
    c = Categorizer(PROFILES, SETTINGS)
    tx = expense("t1", at(2025, 3, 1), 100, "zz unknown", category="Food", confidence=0.7)
    [out] = c.categorize([tx])
    assert out == tx


def test_ai_pass_is_capped_to_newest_transactions():
    stub = OpenAIStub(lambda item: ("Shopping", 0.9, "capped"))
    c = _ai_categorizer(stub, [], max_ai_per_pass=2)
    txs = [expense(f"t{i}", at(2025, 3, 1 + i), 100, f"vendor {i}") for i in range(4)]

    out = c.categorize(txs)

    [call] = categorization_calls(stub.calls)
    assert [row["description"] for row in extract_batch(call["input"])] == ["vendor 2", "vendor 3"]
    assert [t.category for t in out] == ["Other", "Other", "Shopping", "Shopping"]


def test_sink_failure_does_not_lose_results():
    c = Categorizer(PROFILES, SETTINGS, sink=RecordingSink(fail=True))
    out = c.categorize([expense("t1", at(2025, 3, 1), 100, "grab")])
    assert out[0].category == "Transport"


def test_store_receives_annotations():
    store = InMemoryTransactionStore()
    txs = [expense("t1", at(2025, 3, 1), 100, "tuition fee")]
    store.add_transactions("u1", txs)
    c = Categorizer(PROFILES, SETTINGS, sink=store)

    c.categorize(txs)

    saved = store.get("t1")
    assert saved is not None
    assert (saved.category, saved.subcategory) == ("Education", "tuition")
