"""Schema validation for model responses.

The model is never trusted to align positionally on its own: every list is
validated against the batch length and the category vocabulary before any
result is merged. Any violation raises
:class:`~spending_guard.errors.MalformedResponseError` and the caller keeps
its deterministic result for the whole batch.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict, ValidationError, ValidationInfo, field_validator

from .errors import MalformedResponseError
from .prompting import strip_code_fences


class AiDecision(NamedTuple):
    category: str
    # ``None`` means the model declined to commit; the rule result stands.
    confidence: float | None
    reasoning: str


class _CategoryBody(BaseModel):
    """Typed view of ``{categories[], confidence[], reasoning[]}``.

    Validators read ``ValidationInfo.context``:
      - ``allowed_set``: set[str] of category names
      - ``num_items``: expected length of every list
    """

    model_config = ConfigDict(extra="forbid")

    categories: list[str]
    confidence: list[float | None]
    reasoning: list[str]

    @field_validator("categories", "confidence", "reasoning")
    @classmethod
    def _length_matches(cls, v: list[Any], info: ValidationInfo) -> list[Any]:
        expected = info.context.get("num_items") if info.context else None
        if expected is not None and len(v) != expected:
            raise ValueError(f"{info.field_name}: expected {expected} entries, got {len(v)}")
        return v

    @field_validator("categories")
    @classmethod
    def _in_vocabulary(cls, v: list[str], info: ValidationInfo) -> list[str]:
        allowed = info.context.get("allowed_set") if info.context else None
        out: list[str] = []
        for raw in v:
            s = raw.strip()
            if allowed and s not in allowed:
                raise ValueError(f"category not in vocabulary: {raw!r}")
            out.append(s)
        return out

    @field_validator("confidence")
    @classmethod
    def _in_unit_range(cls, v: list[float | None]) -> list[float | None]:
        for c in v:
            if c is not None and not 0.0 <= c <= 1.0:
                raise ValueError("confidence must be in [0,1] or null")
        return v


class _TipsBody(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tips: dict[str, str]


def _decode_object(text: str) -> Mapping[str, Any]:
    try:
        decoded = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"model output was not valid JSON: {e}") from e
    if not isinstance(decoded, Mapping):
        raise MalformedResponseError("model output must be a JSON object at top level")
    return decoded


def parse_category_response(
    text: str,
    *,
    num_items: int,
    allowed_categories: Sequence[str],
) -> list[AiDecision]:
    """Parse categorization output into ``num_items`` aligned decisions."""

    body = _decode_object(text)
    try:
        parsed = _CategoryBody.model_validate(
            body,
            context={"allowed_set": set(allowed_categories), "num_items": num_items},
        )
    except ValidationError as e:
        raise MalformedResponseError(f"invalid categorization response: {e}") from e
    return [
        AiDecision(category=c, confidence=conf, reasoning=r.strip())
        for c, conf, r in zip(parsed.categories, parsed.confidence, parsed.reasoning, strict=True)
    ]


def parse_tips_response(
    text: str,
    *,
    categories: Sequence[str],
    max_chars: int,
) -> dict[str, str]:
    """Return accepted tips keyed by category; unknown or blank entries are dropped."""

    body = _decode_object(text)
    try:
        parsed = _TipsBody.model_validate(body)
    except ValidationError as e:
        raise MalformedResponseError(f"invalid tips response: {e}") from e
    wanted = set(categories)
    out: dict[str, str] = {}
    for cat, tip in parsed.tips.items():
        name = cat.strip()
        cleaned = " ".join(tip.split())
        if name in wanted and cleaned:
            out[name] = cleaned[:max_chars]
    return out
