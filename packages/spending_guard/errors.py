"""Exception taxonomy for the analysis engine.

Inference failures are never fatal: every consumer of the AI gateway catches
:class:`InferenceError` and substitutes a deterministic result. Absence of data
is not an error anywhere in the engine; it yields empty results.
"""

from __future__ import annotations


class SpendingGuardError(Exception):
    """Base class for all engine errors."""


class ConfigError(SpendingGuardError, ValueError):
    """Raised when configuration or category profiles fail validation."""


class InferenceError(SpendingGuardError):
    """Base class for failures at the AI inference boundary."""


class TransientInferenceError(InferenceError):
    """Network, timeout, or throttling failure that is worth retrying."""


class RateLimitedError(TransientInferenceError):
    """The local sliding-window limiter rejected the call."""

    def __init__(self, retry_after: float) -> None:
        super().__init__(f"rate limit window full; retry after {retry_after:.2f}s")
        self.retry_after = retry_after


class ExhaustedInferenceError(InferenceError):
    """Retries ran out (or the failure was terminal); callers must fall back."""

    def __init__(self, message: str, *, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class MalformedResponseError(InferenceError, ValueError):
    """The model answered, but the text failed schema validation."""


__all__ = [
    "ConfigError",
    "ExhaustedInferenceError",
    "InferenceError",
    "MalformedResponseError",
    "RateLimitedError",
    "SpendingGuardError",
    "TransientInferenceError",
]
