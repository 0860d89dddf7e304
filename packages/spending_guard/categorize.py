"""Hybrid rule/AI transaction categorization.

Public API:
    - :func:`rule_categorize`
    - :class:`Categorizer`

The rule pass always runs and is deterministic. The AI-assisted pass is
optional: it refines rule results batch by batch and may fail at any point
without affecting the rule results it would have replaced.
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable, Iterable, Sequence
from typing import NamedTuple

from . import prompting
from .categories import fallback_profile, match_category, match_subcategory, vocabulary
from .categorization import AiDecision, parse_category_response
from .errors import InferenceError
from .interfaces import CategorizationSink, TextGenerator
from .logging_setup import get_logger
from .models import CategoryProfile, Transaction
from .settings import CategorizerSettings

_logger = get_logger("spending_guard.categorize")


class RuleMatch(NamedTuple):
    category: str
    subcategory: str
    confidence: float
    reasoning: str


def rule_categorize(
    description: str,
    amount: int,
    profiles: Sequence[CategoryProfile],
    settings: CategorizerSettings,
) -> RuleMatch:
    """Keyword categorization; identical inputs always give identical output."""

    hit = match_category(description, profiles)
    if hit is None:
        category = fallback_profile(profiles).name
        subcategory = ""
        confidence = settings.default_confidence
        reasoning = "Default categorization"
    else:
        profile, keyword = hit
        category = profile.name
        subcategory = match_subcategory(description, profile)
        confidence = settings.keyword_confidence
        reasoning = f'Matched keyword "{keyword}"'
    if abs(amount) > settings.material_amount:
        confidence = max(confidence, settings.material_confidence)
    return RuleMatch(category, subcategory, confidence, reasoning)


def _paginate(n_total: int, page_size: int) -> Iterable[tuple[int, int, int]]:
    """Yield ``(batch_index, base, end)`` half-open ranges over ``n_total`` items."""

    for k in range(math.ceil(n_total / page_size)):
        base = k * page_size
        yield (k, base, min(base + page_size, n_total))


class Categorizer:
    """Assign ``category``/``subcategory``/``category_confidence`` to transactions.

    Parameters
    ----------
    profiles:
        Ordered category profiles; exactly one is the fallback.
    settings:
        Batch size, inter-batch delay, confidence levels and eligibility.
    gateway:
        Optional inference gateway. ``None`` (or ``settings.ai_enabled=False``)
        yields a rule-only categorizer.
    sink:
        Optional annotation sink; failures there are logged per item.
    sleep:
        Inter-batch delay function; injectable for tests.
    """

    def __init__(
        self,
        profiles: Sequence[CategoryProfile],
        settings: CategorizerSettings,
        *,
        gateway: TextGenerator | None = None,
        sink: CategorizationSink | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._profiles = tuple(profiles)
        self._by_name = {p.name: p for p in self._profiles}
        self._vocabulary = vocabulary(self._profiles)
        self._settings = settings
        self._gateway = gateway
        self._sink = sink
        self._sleep = sleep

    def is_eligible(self, tx: Transaction) -> bool:
        if not tx.is_categorized:
            return True
        if tx.category not in self._by_name:
            return True
        return tx.category_confidence < self._settings.reevaluate_below

    def categorize(self, transactions: Sequence[Transaction]) -> list[Transaction]:
        """Return one annotated transaction per input, preserving input order."""

        results = list(transactions)
        eligible = [i for i, tx in enumerate(results) if self.is_eligible(tx)]
        if not eligible:
            return results

        proposed: dict[int, RuleMatch] = {}
        for i in eligible:
            tx = results[i]
            proposed[i] = rule_categorize(
                tx.raw_description, tx.amount, self._profiles, self._settings
            )

        ai_positions = self._select_for_ai(results, eligible)
        if ai_positions:
            for i, decision in self._run_ai_pass(results, ai_positions).items():
                if decision.confidence is None:
                    continue
                profile = self._by_name[decision.category]
                proposed[i] = RuleMatch(
                    decision.category,
                    match_subcategory(results[i].raw_description, profile),
                    decision.confidence,
                    decision.reasoning,
                )

        changed = 0
        for i, match in proposed.items():
            before = results[i]
            keep_existing = (
                before.is_categorized
                and before.category in self._by_name
                and match.confidence < before.category_confidence
            )
            if keep_existing:
                continue
            after = before.with_category(match.category, match.subcategory, match.confidence)
            if after != before:
                results[i] = after
                changed += 1
                self._save(after)

        _logger.info(
            "categorize:done total=%d eligible=%d ai_candidates=%d changed=%d",
            len(results),
            len(eligible),
            len(ai_positions),
            changed,
        )
        return results

    # ---- AI-assisted pass ------------------------------------------------------

    def _select_for_ai(self, results: Sequence[Transaction], eligible: Sequence[int]) -> list[int]:
        if self._gateway is None or not self._settings.ai_enabled:
            return []
        cap = self._settings.max_ai_per_pass
        newest_first = sorted(eligible, key=lambda i: results[i].timestamp, reverse=True)
        return sorted(newest_first[:cap])

    def _run_ai_pass(
        self, results: Sequence[Transaction], positions: Sequence[int]
    ) -> dict[int, AiDecision]:
        decisions: dict[int, AiDecision] = {}
        batch_size = self._settings.batch_size
        for batch_index, base, end in _paginate(len(positions), batch_size):
            if batch_index > 0 and self._settings.inter_batch_delay_seconds > 0:
                self._sleep(self._settings.inter_batch_delay_seconds)
            batch_positions = positions[base:end]
            batch = [results[i] for i in batch_positions]
            _logger.info(
                "categorize:batch_llm batch_index=%d num_transactions=%d",
                batch_index,
                len(batch),
            )
            try:
                parsed = self._categorize_batch(batch)
            except InferenceError as e:
                _logger.warning(
                    "categorize:batch_fallback batch_index=%d num_transactions=%d error=%s",
                    batch_index,
                    len(batch),
                    e.__class__.__name__,
                )
                continue
            for pos, decision in zip(batch_positions, parsed, strict=True):
                decisions[pos] = decision
        return decisions

    def _categorize_batch(self, batch: Sequence[Transaction]) -> list[AiDecision]:
        assert self._gateway is not None
        text = self._gateway.generate(
            prompting.build_categorization_prompt(batch, self._vocabulary),
            instructions=prompting.build_categorization_instructions(),
        )
        return parse_category_response(
            text, num_items=len(batch), allowed_categories=self._vocabulary
        )

    # ---- Persistence -----------------------------------------------------------

    def _save(self, tx: Transaction) -> None:
        if self._sink is None:
            return
        try:
            self._sink.save_categorization(
                tx.id, tx.category, tx.subcategory, tx.category_confidence
            )
        except Exception as e:  # noqa: BLE001
            _logger.warning(
                "categorize:save_failed transaction_id=%s error=%s: %s",
                tx.id,
                e.__class__.__name__,
                e,
            )
