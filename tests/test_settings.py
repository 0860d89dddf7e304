from __future__ import annotations

import json
from pathlib import Path

import pytest

from spending_guard.categories import default_profiles, load_profiles
from spending_guard.errors import ConfigError
from spending_guard.settings import EngineSettings, load_settings


def test_defaults_match_documented_values():
    s = load_settings(environ={})
    assert s.gateway.requests_per_window == 10
    assert s.gateway.window_seconds == 60
    assert s.gateway.max_attempts == 3
    assert s.gateway.backoff_multiplier == 1.5
    assert s.gateway.timeout_seconds == 30
    assert s.categorizer.batch_size == 10
    assert s.patterns.spike_threshold == 0.5
    assert s.patterns.spike_high_threshold == 1.0
    assert s.budget.normalized_ratios() == {"needs": 0.5, "wants": 0.3, "savings": 0.2}
    assert s.budget.tolerance == 0.2
    assert s.alerts.rapid_amount_threshold == 500_000
    assert s.scheduler.full_pass_interval_seconds == 300
    assert s.scheduler.fast_path_interval_seconds == 60


def test_file_then_environment_layering(tmp_path: Path):
    cfg = tmp_path / "engine.json"
    cfg.write_text(
        json.dumps(
            {
                "timezone": "Asia/Manila",
                "alerts": {"rapid_min_count": 4},
                "budget": {"tolerance": 0.1},
            }
        ),
        encoding="utf-8",
    )
    env = {
        "SPENDING_GUARD__ALERTS__RAPID_MIN_COUNT": "5",
        "SPENDING_GUARD__BUDGET__BUCKET_RATIOS__NEEDS": "0.6",
        "UNRELATED": "x",
    }

    s = load_settings(cfg, environ=env)

    assert s.timezone == "Asia/Manila"
    assert str(s.tzinfo) == "Asia/Manila"
    assert s.alerts.rapid_min_count == 5
    assert s.budget.tolerance == 0.1
    assert s.budget.bucket_ratios == {"needs": 0.6, "wants": 0.3, "savings": 0.2}


def test_config_path_from_environment(tmp_path: Path):
    cfg = tmp_path / "engine.json"
    cfg.write_text('{"gateway": {"enabled": false}}', encoding="utf-8")
    s = load_settings(environ={"SPENDING_GUARD_CONFIG": str(cfg)})
    assert s.gateway.enabled is False


@pytest.mark.parametrize(
    "env",
    [
        {"SPENDING_GUARD__CATEGORIZER__BATCH_SIZE": "5"},
        {"SPENDING_GUARD__TIMEZONE": "Mars/Olympus"},
        {"SPENDING_GUARD__ALERTS__NOT_A_FIELD": "1"},
        {"SPENDING_GUARD__PATTERNS__SPIKE_HIGH_THRESHOLD": "0.2"},
        {"SPENDING_GUARD__BUDGET__BUCKET_RATIOS__NEEDS": "-1"},
    ],
)
def test_invalid_values_raise_config_error(env: dict[str, str]):
    with pytest.raises(ConfigError):
        load_settings(environ=env)


def test_missing_or_malformed_file_is_config_error(tmp_path: Path):
    with pytest.raises(ConfigError):
        load_settings(tmp_path / "nope.json", environ={})
    bad = tmp_path / "bad.json"
    bad.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_settings(bad, environ={})


def test_settings_are_immutable():
    s = EngineSettings()
    with pytest.raises(ValueError):
        s.alerts.rapid_min_count = 10  # type: ignore[misc]


# ---- Category profiles -------------------------------------------------------


def test_default_profiles_have_one_fallback_and_valid_ratios():
    profiles = default_profiles()
    assert [p.name for p in profiles if p.fallback] == ["Other"]
    assert all(0.0 <= p.budget_ratio <= 1.0 for p in profiles)
    assert len({p.name for p in profiles}) == len(profiles)


def test_load_profiles_from_json(tmp_path: Path):
    path = tmp_path / "profiles.json"
    path.write_text(
        json.dumps(
            [
                {
                    "name": "Pagkain",
                    "bucket": "needs",
                    "budget_ratio": 0.4,
                    "keywords": ["Kain", " kain ", "LUTO"],
                },
                {"name": "Iba pa", "bucket": "wants", "fallback": True},
            ]
        ),
        encoding="utf-8",
    )

    profiles = load_profiles(path)

    assert [p.name for p in profiles] == ["Pagkain", "Iba pa"]
    assert profiles[0].keywords == ("kain", "luto")


@pytest.mark.parametrize(
    "payload",
    [
        [{"name": "A", "bucket": "needs"}],
        [{"name": "A", "bucket": "needs", "fallback": True}] * 2,
        [{"name": "A", "bucket": "luxuries", "fallback": True}],
        [{"name": "A", "bucket": "needs", "budget_ratio": 1.5, "fallback": True}],
    ],
)
def test_invalid_profile_sets_are_rejected(tmp_path: Path, payload):
    path = tmp_path / "profiles.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    with pytest.raises(ConfigError):
        load_profiles(path)
