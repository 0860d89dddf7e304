"""Category profiles: keyword rules, bucket assignment and budget shares.

The default set targets Filipino household spending (English and Tagalog
keywords). A replacement set can be loaded from JSON with
:func:`load_profiles`; it must contain exactly one fallback profile.

Profile order matters: keyword matching is first-match-wins.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from pydantic import TypeAdapter, ValidationError

from .errors import ConfigError
from .models import CategoryProfile

FALLBACK_CATEGORY = "Other"

_DEFAULT_PROFILES_RAW: tuple[dict[str, Any], ...] = (
    {
        "name": "Food",
        "bucket": "needs",
        "budget_ratio": 0.30,
        "keywords": (
            "kakainin", "pagkain", "restaurant", "grocery", "tindahan", "palengke",
            "fast food", "delivery", "jollibee", "mcdo", "foodpanda", "carinderia",
        ),
        "subcategories": {
            "groceries": ("grocery", "palengke", "tindahan", "supermarket"),
            "dining": ("restaurant", "jollibee", "mcdo", "fast food", "carinderia"),
            "delivery": ("delivery", "foodpanda", "grabfood"),
        },
        "tips": (
            "Plan weekly meals and buy from the palengke instead of convenience stores.",
            "Limit food delivery to once a week and cook in batches.",
        ),
    },
    {
        "name": "Transport",
        "bucket": "needs",
        "budget_ratio": 0.04,
        "keywords": (
            "jeepney", "bus", "tricycle", "grab", "taxi", "mrt", "lrt", "gasolina", "gas",
            "angkas", "beep",
        ),
        "subcategories": {
            "public": ("jeepney", "bus", "tricycle", "mrt", "lrt", "beep"),
            "ride_hailing": ("grab", "taxi", "angkas"),
            "fuel": ("gasolina", "gas"),
        },
        "tips": (
            "Use the MRT/LRT or jeepney for regular routes; save ride-hailing for late nights.",
            "Load a Beep card in bulk to avoid queueing fares.",
        ),
    },
    {
        "name": "Utilities",
        "bucket": "needs",
        "budget_ratio": 0.05,
        "keywords": (
            "kuryente", "electricity", "tubig", "water", "internet", "phone", "meralco",
            "pldt", "globe", "smart", "maynilad",
        ),
        "subcategories": {
            "electricity": ("kuryente", "electricity", "meralco"),
            "water": ("tubig", "water", "maynilad"),
            "connectivity": ("internet", "phone", "pldt", "globe", "smart"),
        },
        "tips": (
            "Unplug appliances when not in use and run the aircon on a timer.",
            "Review your mobile and internet plans for cheaper bundles.",
        ),
    },
    {
        "name": "Rent",
        "bucket": "needs",
        "budget_ratio": 0.08,
        "keywords": ("upa", "rent", "dormitory", "condo", "apartment", "boarding"),
        "subcategories": {
            "housing": ("upa", "rent", "apartment", "condo"),
            "dormitory": ("dormitory", "boarding"),
        },
        "tips": ("Consider sharing a unit or negotiating a longer lease for a lower rate.",),
    },
    {
        "name": "Health",
        "bucket": "needs",
        "budget_ratio": 0.03,
        "keywords": ("gamot", "medicine", "doctor", "hospital", "checkup", "pharmacy", "mercury"),
        "subcategories": {
            "medicine": ("gamot", "medicine", "pharmacy", "mercury"),
            "consultation": ("doctor", "hospital", "checkup"),
        },
        "tips": ("Ask for generic alternatives to branded medicine.",),
    },
    {
        "name": "Education",
        "bucket": "wants",
        "budget_ratio": 0.05,
        "keywords": ("tuition", "school", "books", "supplies", "enrollment"),
        "subcategories": {
            "tuition": ("tuition", "enrollment", "school"),
            "materials": ("books", "supplies"),
        },
        "tips": ("Buy second-hand books and school supplies in bulk before the school rush.",),
    },
    {
        "name": "Remittance",
        "bucket": "wants",
        "budget_ratio": 0.07,
        "keywords": ("padala", "remittance", "family", "pamilya", "utang", "loan"),
        "subcategories": {
            "family_support": ("padala", "remittance", "family", "pamilya"),
            "debt": ("utang", "loan"),
        },
        "tips": (
            "Agree on a fixed monthly padala amount with your family.",
            "Pay down high-interest utang first before lending more.",
        ),
    },
    {
        "name": "Entertainment",
        "bucket": "wants",
        "budget_ratio": 0.10,
        "keywords": ("sine", "movie", "gala", "gimik", "bar", "party", "netflix", "spotify"),
        "subcategories": {
            "outings": ("sine", "movie", "gala", "gimik", "bar", "party"),
            "subscriptions": ("netflix", "spotify"),
        },
        "tips": (
            "Set a fixed gimik allowance per week and leave cards at home.",
            "Cancel streaming subscriptions you have not used this month.",
        ),
    },
    {
        "name": "Shopping",
        "bucket": "wants",
        "budget_ratio": 0.08,
        "keywords": ("shopping", "lazada", "shopee", "mall", "zalora"),
        "subcategories": {
            "online": ("lazada", "shopee", "zalora"),
            "in_store": ("mall", "shopping"),
        },
        "tips": ("Wait 48 hours before checking out items in your cart.",),
    },
    {
        "name": "Savings",
        "bucket": "savings",
        "budget_ratio": 0.20,
        "keywords": ("ipon", "savings", "deposit", "investment", "pag-ibig", "mp2"),
        "subcategories": {
            "emergency_fund": ("ipon", "savings", "deposit"),
            "investments": ("investment", "pag-ibig", "mp2"),
        },
        "tips": ("Automate a transfer to savings right after payday.",),
    },
    {
        "name": FALLBACK_CATEGORY,
        "bucket": "wants",
        "budget_ratio": 0.0,
        "fallback": True,
        "tips": ("Review uncategorized spending and label recurring items.",),
    },
)

_PROFILES_ADAPTER: TypeAdapter[list[CategoryProfile]] = TypeAdapter(list[CategoryProfile])


def _validate_profile_set(profiles: Sequence[CategoryProfile]) -> tuple[CategoryProfile, ...]:
    names = [p.name for p in profiles]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise ConfigError(f"duplicate category names: {dupes}")
    fallbacks = [p for p in profiles if p.fallback]
    if len(fallbacks) != 1:
        raise ConfigError(f"expected exactly one fallback category, found {len(fallbacks)}")
    return tuple(profiles)


def default_profiles() -> tuple[CategoryProfile, ...]:
    return _validate_profile_set(_PROFILES_ADAPTER.validate_python(list(_DEFAULT_PROFILES_RAW)))


def load_profiles(path: str | Path) -> tuple[CategoryProfile, ...]:
    """Load and validate a profile set from a JSON array of profile objects."""

    p = Path(path)
    try:
        raw = p.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConfigError(f"category profile file not found: {p}") from e
    try:
        data = json.loads(raw)
        profiles = _PROFILES_ADAPTER.validate_python(data)
    except (json.JSONDecodeError, ValidationError) as e:
        raise ConfigError(f"invalid category profile file {p}: {e}") from e
    return _validate_profile_set(profiles)


def fallback_profile(profiles: Sequence[CategoryProfile]) -> CategoryProfile:
    for p in profiles:
        if p.fallback:
            return p
    raise ConfigError("no fallback category profile configured")


def vocabulary(profiles: Sequence[CategoryProfile]) -> tuple[str, ...]:
    """Category names in profile order (the fixed label set offered to the model)."""

    return tuple(p.name for p in profiles)


def match_category(
    description: str, profiles: Sequence[CategoryProfile]
) -> tuple[CategoryProfile, str] | None:
    """Return ``(profile, keyword)`` for the first profile with a substring hit."""

    text = description.lower()
    for profile in profiles:
        for keyword in profile.keywords:
            if keyword in text:
                return profile, keyword
    return None


def match_subcategory(description: str, profile: CategoryProfile) -> str:
    text = description.lower()
    for sub, words in profile.subcategories.items():
        if any(w in text for w in words):
            return sub
    return ""
