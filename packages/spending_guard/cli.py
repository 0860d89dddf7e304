# ruff: noqa: I001
"""CLI for the ``spending_guard`` package.

Typer-based console interface. Environment variables (notably
``OPENAI_API_KEY`` and ``DATABASE_URL``) are loaded from a local ``.env``
using ``python-dotenv`` before any command runs. Business logic lives in
``spending_guard.api`` and the engine modules; handlers here only parse
arguments, print results and map failures to exit codes.
"""

from __future__ import annotations

import csv
import os
from datetime import datetime
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .alerts import format_money
from .errors import ConfigError
from .logging_setup import configure_logging
from .models import Transaction
from .settings import EngineSettings, load_settings


def _fail(message: str) -> typer.Exit:
    typer.echo(f"Error: {message}", err=True)
    return typer.Exit(1)


def _resolve_settings(config: Path | None, *, no_ai: bool) -> EngineSettings:
    """Load settings and switch to rule-only mode when AI is off or unconfigured."""

    try:
        settings = load_settings(config)
    except ConfigError as e:
        raise _fail(str(e)) from e
    disable = no_ai
    if not disable and settings.gateway.enabled and not os.getenv("OPENAI_API_KEY"):
        typer.echo("Note: OPENAI_API_KEY is not set; using keyword rules only.", err=True)
        disable = True
    if disable:
        settings = settings.model_copy(
            update={"gateway": settings.gateway.model_copy(update={"enabled": False})}
        )
    return settings


def _load_csv(csv_path: Path, settings: EngineSettings) -> list[Transaction]:
    from .ingest.utils import load_transactions_from_csv

    try:
        return load_transactions_from_csv(csv_path, tz=settings.tzinfo)
    except FileNotFoundError as e:
        raise _fail(f"File not found: {csv_path}") from e
    except PermissionError as e:
        raise _fail(f"Permission denied: {csv_path}") from e
    except csv.Error as e:
        raise _fail(f"Failed to parse CSV: {e}") from e


def _parse_income(value: str | None) -> int | None:
    if value is None:
        return None
    from .ingest.adapters.transactions_csv import parse_amount

    minor = parse_amount(value)
    if minor is None or minor < 0:
        raise _fail(f"--income must be a non-negative amount, got {value!r}")
    return minor


def _parse_as_of(value: str | None, settings: EngineSettings) -> datetime | None:
    if value is None:
        return None
    from .ingest.adapters.transactions_csv import parse_timestamp

    ts = parse_timestamp(value, settings.tzinfo)
    if ts is None:
        raise _fail(f"--as-of must be an ISO date or datetime, got {value!r}")
    return ts


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Categorize transactions, detect spending patterns, plan a 50/30/20 budget and "
        "raise alerts. Loads OPENAI_API_KEY and DATABASE_URL from a local .env."
    ),
)

# Module-level option objects to satisfy ruff B008 (no calls in parameter
# defaults). Typer inspects these when used as default values below.
CSV_PATH_OPTION: OptionInfo = typer.Option(
    ...,
    "--csv-path",
    help="Path to a transactions CSV (id,date,amount,description[,kind,...])",
    dir_okay=False,
    file_okay=True,
    exists=False,  # the handler reports missing files itself
)
CONFIG_OPTION: OptionInfo = typer.Option(
    ..., "--config", help="JSON settings file (falls back to SPENDING_GUARD_CONFIG)."
)
NO_AI_OPTION: OptionInfo = typer.Option(
    ..., "--no-ai", help="Use keyword rules and static tips only."
)
DATABASE_URL_OPTION: OptionInfo = typer.Option(
    ..., "--database-url", help="Override DATABASE_URL (falls back to env var)."
)


@app.command("categorize")
def categorize_cmd(
    csv_path: Annotated[Path, CSV_PATH_OPTION],
    config: Annotated[Path | None, CONFIG_OPTION] = None,
    no_ai: Annotated[bool, NO_AI_OPTION] = False,
) -> None:
    """Categorize a CSV and print ``<id>\\t<category>\\t<subcategory>\\t<confidence>``."""

    from .api import build_engine
    from .memory_store import InMemoryTransactionStore

    settings = _resolve_settings(config, no_ai=no_ai)
    transactions = _load_csv(csv_path, settings)
    store = InMemoryTransactionStore()
    try:
        engine = build_engine(settings, source=store, sink=None)
    except ConfigError as e:
        raise _fail(str(e)) from e

    for tx in engine.categorizer.categorize(transactions):
        typer.echo(f"{tx.id}\t{tx.category}\t{tx.subcategory}\t{tx.category_confidence:.2f}")


@app.command("analyze")
def analyze_cmd(
    csv_path: Annotated[Path, CSV_PATH_OPTION],
    income: Annotated[
        str | None,
        typer.Option("--income", help="Declared monthly income (overrides observed income)."),
    ] = None,
    as_of: Annotated[
        str | None,
        typer.Option("--as-of", help="Analysis time (ISO); defaults to the latest transaction."),
    ] = None,
    config: Annotated[Path | None, CONFIG_OPTION] = None,
    no_ai: Annotated[bool, NO_AI_OPTION] = False,
) -> None:
    """Run one full analysis pass plus the rapid-spending check over a CSV."""

    from .api import analyze_transactions

    settings = _resolve_settings(config, no_ai=no_ai)
    declared = _parse_income(income)
    now = _parse_as_of(as_of, settings)
    transactions = _load_csv(csv_path, settings)
    try:
        result = analyze_transactions(
            transactions, settings, now=now, declared_income=declared
        )
    except (ConfigError, RuntimeError) as e:
        raise _fail(str(e)) from e

    sym = settings.alerts.currency_symbol
    plan = result.report.plan
    typer.echo(f"Monthly income: {format_money(plan.monthly_income, sym)} ({plan.income_source})")
    typer.echo("Budget:")
    for bucket, alloc in plan.allocations.items():
        typer.echo(f"  {bucket}\t{alloc.ratio:.0%}\t{format_money(alloc.amount, sym)}")
    typer.echo("Spending this month:")
    for category, actual in sorted(plan.category_actuals.items()):
        target = plan.per_category_targets.get(category, 0)
        flag = "  OVER" if plan.overage_for(category) is not None else ""
        typer.echo(
            f"  {category}\t{format_money(actual, sym)} / {format_money(target, sym)}{flag}"
        )
    if plan.emergency_fund_goal:
        typer.echo(
            f"Emergency fund goal: {format_money(plan.emergency_fund_goal, sym)} "
            f"(gap {format_money(plan.emergency_fund_gap, sym)})"
        )

    typer.echo("Patterns:")
    for p in result.report.patterns:
        typer.echo(f"  [{p.severity}] {p.kind}\t{p.category}\t{p.description}")
    typer.echo("Alerts:")
    for a in result.report.active_alerts:
        typer.echo(f"  [{a.severity}] {a.type}\t{a.category}\t{a.message}")
    for e in result.fast_path_events:
        if e.kind == "created":
            a = e.alert
            typer.echo(f"  [{a.severity}] {a.type}\t{a.category}\t{a.message}")
    for i in result.interventions:
        typer.echo(f"Intervention: {i.action}")
        typer.echo(f"  {i.reasoning}. {i.expected_impact}.")


@app.command("ingest")
def ingest_cmd(
    csv_path: Annotated[Path, CSV_PATH_OPTION],
    user_id: Annotated[str, typer.Option("--user-id", help="Owner of the transactions.")],
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
    create_schema: Annotated[
        bool, typer.Option("--create-schema", help="Create missing tables first.")
    ] = False,
    config: Annotated[Path | None, CONFIG_OPTION] = None,
) -> None:
    """Upsert CSV rows into the SQL transaction store."""

    from .persistence import SqlTransactionStore

    try:
        settings = load_settings(config)
    except ConfigError as e:
        raise _fail(str(e)) from e
    transactions = _load_csv(csv_path, settings)
    store = SqlTransactionStore(database_url)
    try:
        if create_schema:
            store.create_schema()
        n = store.upsert_transactions(user_id, transactions)
    except Exception as e:  # noqa: BLE001
        raise _fail(f"persistence (upsert) failed: {e}") from e
    typer.echo(f"Ingested {n} transactions for {user_id}")


@app.command("watch")
def watch_cmd(
    user_id: Annotated[str, typer.Option("--user-id", help="Whose transactions to monitor.")],
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
    income: Annotated[
        str | None,
        typer.Option("--income", help="Declared monthly income (overrides observed income)."),
    ] = None,
    duration: Annotated[
        float | None,
        typer.Option("--duration", help="Stop after this many seconds (default: until Ctrl-C)."),
    ] = None,
    config: Annotated[Path | None, CONFIG_OPTION] = None,
    no_ai: Annotated[bool, NO_AI_OPTION] = False,
) -> None:
    """Run the scheduler against the SQL store until interrupted."""

    from .api import build_engine
    from .persistence import SqlTransactionStore

    settings = _resolve_settings(config, no_ai=no_ai)
    declared = _parse_income(income)
    store = SqlTransactionStore(database_url)
    try:
        engine = build_engine(
            settings, source=store, sink=store, user_id=user_id, declared_income=declared
        )
    except ConfigError as e:
        raise _fail(str(e)) from e

    scheduler = engine.scheduler
    scheduler.start()
    typer.echo(f"Watching {user_id}; press Ctrl-C to stop.", err=True)
    try:
        scheduler.wait(duration)
    except KeyboardInterrupt:
        typer.echo("Stopping...", err=True)
    finally:
        clean = scheduler.stop()
    if not clean:
        raise _fail("scheduler did not stop within the timeout")


@app.callback(invoke_without_command=True)
def _root(ctx: typer.Context) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures package logging.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

    # Central logging setup so child loggers inherit configuration
    configure_logging()

    if ctx.invoked_subcommand is None:
        typer.echo("No subcommand provided. Use --help to see available commands.")
        raise typer.Exit(1)


if __name__ == "__main__":  # pragma: no cover
    # Running as a module: `python -m spending_guard.cli`
    app()
