"""Public interface for the ``spending_guard`` package.

This module exposes the engine entry points and public models/types as the
stable import surface. There is no runtime logic here, only symbol re-exports.
"""

from .api import AnalysisResult, Engine, analyze_transactions, build_engine
from .errors import (
    ConfigError,
    ExhaustedInferenceError,
    InferenceError,
    MalformedResponseError,
    RateLimitedError,
    SpendingGuardError,
    TransientInferenceError,
)
from .models import (
    Account,
    Alert,
    AlertEvent,
    BudgetOverage,
    BudgetPlan,
    CategoryProfile,
    Intervention,
    PassReport,
    SpendingPattern,
    Transaction,
)
from .settings import EngineSettings, load_settings

__all__ = [
    # API
    "AnalysisResult",
    "Engine",
    "analyze_transactions",
    "build_engine",
    "load_settings",
    "EngineSettings",
    # Errors
    "ConfigError",
    "ExhaustedInferenceError",
    "InferenceError",
    "MalformedResponseError",
    "RateLimitedError",
    "SpendingGuardError",
    "TransientInferenceError",
    # Models
    "Account",
    "Alert",
    "AlertEvent",
    "BudgetOverage",
    "BudgetPlan",
    "CategoryProfile",
    "Intervention",
    "PassReport",
    "SpendingPattern",
    "Transaction",
]
