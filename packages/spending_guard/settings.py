"""Engine configuration.

Every threshold, window, rate limit and ratio the engine uses lives here so it
can be tuned without code changes. Values resolve in three layers:

1. model defaults,
2. an optional JSON file (``path`` argument or ``SPENDING_GUARD_CONFIG``),
3. environment overrides named ``SPENDING_GUARD__<SECTION>__<FIELD>``; mapping
   fields take one more segment, e.g.
   ``SPENDING_GUARD__BUDGET__BUCKET_RATIOS__NEEDS=0.6``.

Each layer is deep-merged over the previous one, so an override of a mapping
field only replaces the keys it names.

Validation is delegated to Pydantic; any failure surfaces as
:class:`~spending_guard.errors.ConfigError`.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import ConfigError

CONFIG_PATH_ENV = "SPENDING_GUARD_CONFIG"
ENV_PREFIX = "SPENDING_GUARD__"


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class GatewaySettings(_Section):
    enabled: bool = True
    model: str = "gpt-4o-mini"
    requests_per_window: int = Field(default=10, ge=1)
    window_seconds: float = Field(default=60.0, gt=0)
    max_attempts: int = Field(default=3, ge=1)
    backoff_base_seconds: float = Field(default=1.0, ge=0)
    backoff_multiplier: float = Field(default=1.5, ge=1.0)
    jitter_pct: float = Field(default=0.0, ge=0, le=1.0)
    timeout_seconds: float = Field(default=30.0, gt=0)
    max_output_tokens: int = Field(default=1024, ge=1)
    temperature: float = Field(default=0.2, ge=0, le=2.0)


class CategorizerSettings(_Section):
    ai_enabled: bool = True
    batch_size: int = Field(default=10, ge=10, le=50)
    max_ai_per_pass: int = Field(default=50, ge=0)
    inter_batch_delay_seconds: float = Field(default=1.0, ge=0)
    reevaluate_below: float = Field(default=0.8, ge=0, le=1.0)
    default_confidence: float = Field(default=0.6, ge=0, le=1.0)
    keyword_confidence: float = Field(default=0.75, ge=0, le=1.0)
    material_confidence: float = Field(default=0.65, ge=0, le=1.0)
    # Minor units; 1_000_000 == 10,000.00
    material_amount: int = Field(default=1_000_000, ge=0)


class PatternSettings(_Section):
    spike_threshold: float = Field(default=0.5, ge=0)
    spike_high_threshold: float = Field(default=1.0, ge=0)
    trend_months: int = Field(default=3, ge=2, le=12)
    trend_threshold: float = Field(default=0.2, ge=0)
    outlier_stddev_multiplier: float = Field(default=2.0, gt=0)
    outlier_high_multiplier: float = Field(default=3.0, gt=0)
    outlier_min_samples: int = Field(default=5, ge=2)

    @model_validator(mode="after")
    def _ordered_thresholds(self) -> PatternSettings:
        if self.spike_high_threshold < self.spike_threshold:
            raise ValueError("spike_high_threshold must be >= spike_threshold")
        if self.outlier_high_multiplier < self.outlier_stddev_multiplier:
            raise ValueError("outlier_high_multiplier must be >= outlier_stddev_multiplier")
        return self


class BudgetSettings(_Section):
    bucket_ratios: dict[str, float] = Field(
        default_factory=lambda: {"needs": 0.5, "wants": 0.3, "savings": 0.2}
    )
    tolerance: float = Field(default=0.2, ge=0)
    declared_monthly_income: int | None = Field(default=None, ge=0)
    income_window_days: int = Field(default=30, ge=1)
    ai_tips_enabled: bool = True
    max_tip_chars: int = Field(default=280, ge=20)
    emergency_fund_months: int = Field(default=3, ge=0)

    @field_validator("bucket_ratios")
    @classmethod
    def _ratios_usable(cls, v: dict[str, float]) -> dict[str, float]:
        if not v:
            raise ValueError("bucket_ratios must not be empty")
        if any(r < 0 for r in v.values()):
            raise ValueError("bucket_ratios must be non-negative")
        if sum(v.values()) <= 0:
            raise ValueError("bucket_ratios must have a positive sum")
        return v

    def normalized_ratios(self) -> dict[str, float]:
        total = sum(self.bucket_ratios.values())
        return {bucket: r / total for bucket, r in self.bucket_ratios.items()}


class AlertSettings(_Section):
    overspend_high_multiplier: float = Field(default=1.5, ge=1.0)
    rapid_window_minutes: int = Field(default=60, ge=1)
    rapid_min_count: int = Field(default=3, ge=1)
    # Minor units; 500_000 == 5,000.00
    rapid_amount_threshold: int = Field(default=500_000, ge=0)
    currency_symbol: str = "₱"


class SchedulerSettings(_Section):
    full_pass_interval_seconds: float = Field(default=300.0, gt=0)
    fast_path_interval_seconds: float = Field(default=60.0, gt=0)
    run_on_start: bool = True
    stop_timeout_seconds: float = Field(default=30.0, gt=0)


class EngineSettings(_Section):
    timezone: str = "UTC"
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)
    categorizer: CategorizerSettings = Field(default_factory=CategorizerSettings)
    patterns: PatternSettings = Field(default_factory=PatternSettings)
    budget: BudgetSettings = Field(default_factory=BudgetSettings)
    alerts: AlertSettings = Field(default_factory=AlertSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    categories_path: Path | None = None

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown timezone: {v!r}") from e
        return v

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    """Fold ``SPENDING_GUARD__A__B__C=value`` variables into a nested dict."""

    nested: dict[str, Any] = {}
    for key, value in environ.items():
        if not key.upper().startswith(ENV_PREFIX):
            continue
        path = [p.lower() for p in key[len(ENV_PREFIX) :].split("__") if p]
        if not path:
            continue
        node = nested
        for part in path[:-1]:
            child = node.setdefault(part, {})
            if not isinstance(child, dict):
                raise ConfigError(f"conflicting configuration keys at {key}")
            node = child
        node[path[-1]] = value
    return nested


def _deep_merge(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for k, v in override.items():
        if isinstance(v, Mapping) and isinstance(out.get(k), Mapping):
            out[k] = _deep_merge(dict(out[k]), v)
        else:
            out[k] = v
    return out


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"config file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"config file is not valid JSON: {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config file must hold a JSON object: {path}")
    return data


def load_settings(
    path: str | os.PathLike[str] | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> EngineSettings:
    """Resolve :class:`EngineSettings` from defaults, a JSON file and the environment.

    Parameters
    ----------
    path:
        Optional JSON config file. When ``None``, ``SPENDING_GUARD_CONFIG`` is
        consulted.
    environ:
        Environment mapping (defaults to ``os.environ``); injectable for tests.
    """

    env = os.environ if environ is None else environ
    raw: dict[str, Any] = EngineSettings().model_dump(mode="json", exclude_none=True)
    file_path = path if path is not None else env.get(CONFIG_PATH_ENV)
    if file_path:
        raw = _deep_merge(raw, _read_config_file(Path(file_path)))
    raw = _deep_merge(raw, _env_overrides(env))
    try:
        return EngineSettings.model_validate(raw)
    except ValidationError as e:
        locs = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ConfigError(f"invalid configuration ({locs}): {e}") from e


__all__ = [
    "AlertSettings",
    "BudgetSettings",
    "CategorizerSettings",
    "EngineSettings",
    "GatewaySettings",
    "PatternSettings",
    "SchedulerSettings",
    "load_settings",
]
