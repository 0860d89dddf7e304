"""Rate-limited, retrying gateway to the text-generation endpoint.

Public API:
    - :class:`AIGateway`

Every engine component that needs natural-language output goes through one
gateway instance. The gateway is allowed to fail closed: on terminal failure
it raises :class:`~spending_guard.errors.ExhaustedInferenceError` and the
caller substitutes its deterministic result. No client is created and no
environment is read at import time.
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from typing import Any

import openai
from openai import OpenAI

from .errors import ExhaustedInferenceError, RateLimitedError, TransientInferenceError
from .logging_setup import get_logger
from .rate_limit import SlidingWindowRateLimiter
from .settings import GatewaySettings

_logger = get_logger("spending_guard.gateway")


def _extract_response_text(resp: Any) -> str:
    """Return the text of a Responses API result.

    Prefers ``resp.output_text``; falls back to ``resp.output[0].content[0].text``
    (some SDK versions expose that as an object with a ``value`` string).
    """

    text: str | None = getattr(resp, "output_text", None)
    if not text:
        try:
            first = resp.output[0] if getattr(resp, "output", None) else None
            content = getattr(first, "content", None)
            if content:
                txt_obj = getattr(content[0], "text", None)
                if isinstance(txt_obj, str):
                    text = txt_obj
                else:
                    maybe_val = getattr(txt_obj, "value", None)
                    if isinstance(maybe_val, str):
                        text = maybe_val
        except (AttributeError, IndexError, TypeError):
            text = None
    if not text or not isinstance(text, str) or not text.strip():
        raise ValueError("Unexpected Responses API shape; unable to locate text output")
    return text


def _is_retryable(exc: BaseException) -> bool:
    """Return True for throttling, timeouts, connection failures and HTTP 429/5xx."""

    if isinstance(exc, TransientInferenceError):
        return True
    if isinstance(exc, openai.APIConnectionError):  # includes APITimeoutError
        return True
    sc = getattr(exc, "status_code", None)
    if isinstance(sc, int) and (sc == 429 or 500 <= sc < 600):
        return True
    return False


class AIGateway:
    """Single entry point for ``Generate(prompt, maxTokens, temperature) -> text``.

    Parameters
    ----------
    settings:
        Model name, rate-limit window, retry schedule and hard timeout.
    client_factory:
        Zero-argument callable returning an ``openai.OpenAI``-shaped client.
        The client is created lazily on first use and reused afterwards.
    limiter:
        Optional pre-built limiter (shared state across gateways is not
        expected, but tests inject one with a fake clock).
    sleep:
        Backoff sleep; injectable for tests.
    """

    def __init__(
        self,
        settings: GatewaySettings,
        *,
        client_factory: Callable[[], Any] | None = None,
        limiter: SlidingWindowRateLimiter | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings
        self._client_factory = client_factory or OpenAI
        self._client: Any | None = None
        self._limiter = limiter or SlidingWindowRateLimiter(
            settings.requests_per_window, settings.window_seconds
        )
        self._sleep = sleep

    @property
    def enabled(self) -> bool:
        return self._settings.enabled

    @property
    def limiter(self) -> SlidingWindowRateLimiter:
        return self._limiter

    def backoff_delay(self, attempt_index: int) -> float:
        """Delay after failed attempt ``attempt_index`` (0-based): ``base * mult**k``."""

        s = self._settings
        base = s.backoff_base_seconds * (s.backoff_multiplier**attempt_index)
        jitter = base * s.jitter_pct
        if jitter:
            base += random.uniform(-jitter, jitter)
        return max(0.0, base)

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = self._client_factory()
        return self._client

    def _call_once(
        self,
        prompt: str,
        *,
        instructions: str | None,
        max_tokens: int,
        temperature: float,
    ) -> str:
        budget = self._settings.timeout_seconds
        waited = self._limiter.acquire(max_wait=budget)
        # Queueing for a slot spends the same per-attempt budget as the request.
        timeout = budget - waited
        if timeout <= 0:
            raise RateLimitedError(0.0)
        kwargs: dict[str, Any] = {
            "model": self._settings.model,
            "input": prompt,
            "max_output_tokens": max_tokens,
            "temperature": temperature,
            "timeout": timeout,
        }
        if instructions:
            kwargs["instructions"] = instructions
        resp = self._get_client().responses.create(**kwargs)
        return _extract_response_text(resp)

    def generate(
        self,
        prompt: str,
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
        instructions: str | None = None,
    ) -> str:
        """Return generated text or raise :class:`ExhaustedInferenceError`."""

        if not self._settings.enabled:
            raise ExhaustedInferenceError("inference disabled by configuration", attempts=0)

        max_attempts = self._settings.max_attempts
        tokens = max_tokens if max_tokens is not None else self._settings.max_output_tokens
        temp = temperature if temperature is not None else self._settings.temperature

        attempt = 0
        while True:
            attempt += 1
            t0 = time.perf_counter()
            try:
                text = self._call_once(
                    prompt, instructions=instructions, max_tokens=tokens, temperature=temp
                )
            except Exception as e:  # noqa: BLE001
                dt_ms = (time.perf_counter() - t0) * 1000.0
                retryable = _is_retryable(e)
                if attempt >= max_attempts or not retryable:
                    _logger.error(
                        "gateway:exhausted attempts=%d latency_ms=%.2f retryable=%s error=%s",
                        attempt,
                        dt_ms,
                        retryable,
                        e.__class__.__name__,
                    )
                    raise ExhaustedInferenceError(
                        f"inference failed after {attempt} attempt(s): {e}", attempts=attempt
                    ) from e
                delay = self.backoff_delay(attempt - 1)
                if isinstance(e, RateLimitedError):
                    _logger.warning(
                        "gateway:rate_limited attempt=%d retry_after=%.2f", attempt, e.retry_after
                    )
                _logger.warning(
                    "gateway:retry attempt=%d latency_ms=%.2f error=%s backoff_s=%.2f",
                    attempt,
                    dt_ms,
                    e.__class__.__name__,
                    delay,
                )
                self._sleep(delay)
                continue

            dt_ms = (time.perf_counter() - t0) * 1000.0
            _logger.info(
                "gateway:request_done attempts=%d latency_ms=%.2f chars=%d",
                attempt,
                dt_ms,
                len(text),
            )
            return text
