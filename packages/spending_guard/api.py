"""Public API and wiring for the ``spending_guard`` package.

:func:`build_engine` composes one implementation of every capability around a
single :class:`~spending_guard.gateway.AIGateway` and returns the ready
:class:`Engine`. :func:`analyze_transactions` runs one full pass plus one fast
path over an in-memory batch, which is what the CLI ``analyze`` command and
the end-to-end tests use.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from .alerts import AlertManager
from .budget import BudgetPlanner
from .categories import default_profiles, fallback_profile, load_profiles
from .categorize import Categorizer
from .gateway import AIGateway
from .interfaces import CategorizationSink, NotificationSink, TransactionSource
from .logging_setup import get_logger
from .memory_store import InMemoryTransactionStore
from .models import Account, AlertEvent, CategoryProfile, Intervention, PassReport, Transaction
from .notifications import CollectingNotificationSink, LoggingNotificationSink
from .patterns import PatternDetector
from .scheduler import Scheduler
from .settings import EngineSettings

_logger = get_logger("spending_guard.api")

DEFAULT_USER_ID = "default"


@dataclass(frozen=True, slots=True)
class Engine:
    settings: EngineSettings
    profiles: tuple[CategoryProfile, ...]
    gateway: AIGateway | None
    categorizer: Categorizer
    detector: PatternDetector
    planner: BudgetPlanner
    alerts: AlertManager
    scheduler: Scheduler


@dataclass(frozen=True, slots=True)
class AnalysisResult:
    report: PassReport
    fast_path_events: tuple[AlertEvent, ...]
    interventions: tuple[Intervention, ...]


def resolve_profiles(settings: EngineSettings) -> tuple[CategoryProfile, ...]:
    if settings.categories_path is not None:
        return load_profiles(settings.categories_path)
    return default_profiles()


def _wants_gateway(settings: EngineSettings) -> bool:
    if not settings.gateway.enabled:
        return False
    return settings.categorizer.ai_enabled or settings.budget.ai_tips_enabled


def build_engine(
    settings: EngineSettings,
    *,
    source: TransactionSource,
    sink: CategorizationSink | None,
    notifier: NotificationSink | None = None,
    profiles: Sequence[CategoryProfile] | None = None,
    client_factory: Callable[[], Any] | None = None,
    user_id: str = DEFAULT_USER_ID,
    declared_income: int | None = None,
    clock: Callable[[], datetime] | None = None,
    sleep: Callable[[float], None] | None = None,
) -> Engine:
    """Compose an :class:`Engine` from settings and the host's boundaries.

    Parameters
    ----------
    settings:
        Resolved engine configuration (see :func:`~spending_guard.settings.load_settings`).
    source, sink:
        Transaction store boundary. ``sink`` may be ``None`` for read-only runs.
    notifier:
        Receives alert events and interventions; defaults to logging only.
    profiles:
        Category profiles; defaults to ``settings.categories_path`` or the
        built-in set.
    client_factory:
        Zero-argument callable returning an ``openai.OpenAI``-shaped client.
    sleep:
        Replaces :func:`time.sleep` for backoff and inter-batch delays.
    """

    profile_set = tuple(profiles) if profiles is not None else resolve_profiles(settings)
    tz = settings.tzinfo
    sleep_kwargs: dict[str, Any] = {} if sleep is None else {"sleep": sleep}

    gateway: AIGateway | None = None
    if _wants_gateway(settings):
        gateway = AIGateway(settings.gateway, client_factory=client_factory, **sleep_kwargs)

    categorizer = Categorizer(
        profile_set,
        settings.categorizer,
        gateway=gateway if settings.categorizer.ai_enabled else None,
        sink=sink,
        **sleep_kwargs,
    )
    detector = PatternDetector(
        settings.patterns, tz=tz, fallback_category=fallback_profile(profile_set).name
    )
    planner = BudgetPlanner(
        profile_set,
        settings.budget,
        gateway=gateway if settings.budget.ai_tips_enabled else None,
        tz=tz,
    )
    alerts = AlertManager(settings.alerts)
    income_window = timedelta(days=settings.budget.income_window_days)

    def analysis_start(now: datetime) -> datetime:
        return min(detector.window_start(now), now - income_window)

    scheduler = Scheduler(
        user_id,
        source=source,
        categorizer=categorizer,
        detector=detector,
        planner=planner,
        alerts=alerts,
        notifier=notifier or LoggingNotificationSink(),
        settings=settings.scheduler,
        alert_settings=settings.alerts,
        analysis_start=analysis_start,
        declared_income=declared_income,
        clock=clock,
    )
    _logger.info(
        "api:engine_built user_id=%s categories=%d ai=%s timezone=%s",
        user_id,
        len(profile_set),
        gateway is not None,
        settings.timezone,
    )
    return Engine(
        settings=settings,
        profiles=profile_set,
        gateway=gateway,
        categorizer=categorizer,
        detector=detector,
        planner=planner,
        alerts=alerts,
        scheduler=scheduler,
    )


def analyze_transactions(
    transactions: Sequence[Transaction],
    settings: EngineSettings,
    *,
    now: datetime | None = None,
    declared_income: int | None = None,
    accounts: Sequence[Account] = (),
    notifier: CollectingNotificationSink | None = None,
    client_factory: Callable[[], Any] | None = None,
    sleep: Callable[[float], None] | None = None,
) -> AnalysisResult:
    """Run one full pass and one fast path over ``transactions``.

    ``now`` defaults to the latest transaction timestamp (or the current time
    for an empty batch) so historical exports are analyzed as of their end.
    """

    if now is None:
        now = max((t.timestamp for t in transactions), default=datetime.now(UTC))
    store = InMemoryTransactionStore()
    store.add_transactions(DEFAULT_USER_ID, transactions)
    store.set_accounts(DEFAULT_USER_ID, accounts)
    collector = notifier or CollectingNotificationSink(forward_to=LoggingNotificationSink())

    fixed_now = now
    engine = build_engine(
        settings,
        source=store,
        sink=store,
        notifier=collector,
        client_factory=client_factory,
        declared_income=declared_income,
        clock=lambda: fixed_now,
        sleep=sleep,
    )
    report = engine.scheduler.run_full_pass()
    if report is None:
        raise RuntimeError("analysis pass failed; see log output for details")
    fast_events = engine.scheduler.run_fast_path() or []
    return AnalysisResult(
        report=report,
        fast_path_events=tuple(fast_events),
        interventions=engine.scheduler.interventions,
    )


__all__ = [
    "AnalysisResult",
    "DEFAULT_USER_ID",
    "Engine",
    "analyze_transactions",
    "build_engine",
    "resolve_profiles",
]
