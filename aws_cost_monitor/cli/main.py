"""
CLI interface for AWS Cost Monitor.

Provides command-line access to syncing and cost comparisons.
"""

import sys
import time
from decimal import Decimal
from pathlib import Path
from typing import List, Optional

import typer
import yaml
from botocore.exceptions import BotoCoreError
from rich.console import Console
from rich.table import Table

from aws_cost_monitor.config.loader import (
    DEFAULT_CONFIG_PATH,
    AppSettings,
    load_settings,
    resolve_database_path,
)
from aws_cost_monitor.core.analysis import (
    ComparisonResult,
    CostAnalysisService,
    DimensionComparison,
    Period,
    create_comparison,
    utc_today,
)
from aws_cost_monitor.core.notifications import NotificationCenter
from aws_cost_monitor.core.sync import CostSyncService, SyncCancelled, SyncResult
from aws_cost_monitor.demo.seed_demo_data import seed_demo_data
from aws_cost_monitor.logging_config import setup_logging
from aws_cost_monitor.sdk.cost_explorer import CostExplorerSource, TransientFetchError
from aws_cost_monitor.storage.db import PersistenceError
from aws_cost_monitor.storage.repository import get_repository, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

MAX_NAME_LENGTH = 40

HANDLED_ERRORS = (
    TransientFetchError,
    PersistenceError,
    SyncCancelled,
    FileNotFoundError,
    ValueError,
    yaml.YAMLError,
    BotoCoreError,
)


class CliState:
    """Options shared by every command."""

    def __init__(self):
        self.config_path: Optional[str] = None
        self.db_override: Optional[str] = None
        self._settings: Optional[AppSettings] = None

    @property
    def settings(self) -> AppSettings:
        if self._settings is None:
            self._settings = _load_app_settings(self.config_path)
        return self._settings

    @property
    def db_path(self) -> str:
        if self.db_override:
            return self.db_override
        config_path = self.config_path
        if config_path is None and Path(DEFAULT_CONFIG_PATH).exists():
            config_path = DEFAULT_CONFIG_PATH
        return resolve_database_path(self.settings, config_path)


state = CliState()


def _load_app_settings(config_path: Optional[str]) -> AppSettings:
    """Load settings from the given file, the default file, or defaults."""
    if config_path is not None:
        return load_settings(config_path)
    if Path(DEFAULT_CONFIG_PATH).exists():
        return load_settings(DEFAULT_CONFIG_PATH)
    return AppSettings()


def _fail(error: Exception) -> None:
    console.print(f"[red]Error:[/] {error}")
    sys.exit(EXIT_CODE_FAIL)


def _analysis(exclude_credits: bool = False) -> CostAnalysisService:
    repository = get_repository(state.db_path)
    return CostAnalysisService(
        repository,
        include_credits=not exclude_credits,
        today_provider=lambda: utc_today(),
    )


def _sync_service(notifications: Optional[NotificationCenter] = None) -> CostSyncService:
    settings = state.settings
    source = CostExplorerSource(profile=settings.aws.profile, region=settings.aws.region)
    return CostSyncService(
        get_repository(state.db_path),
        source,
        today_provider=lambda: utc_today(),
        notifications=notifications,
    )


def _require_data(service: CostAnalysisService) -> None:
    """Exit with a hint when nothing has been synced yet."""
    if not service.has_data():
        console.print("\n[bold yellow]No cost data yet[/]")
        console.print("Run `aws-cost-monitor sync` to fetch costs from AWS.\n")
        sys.exit(EXIT_CODE_PASS)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help=f"Settings file (defaults to ./{DEFAULT_CONFIG_PATH} when present)"
    ),
    db: Optional[str] = typer.Option(
        None,
        "--db",
        help="Database path, overriding the settings file"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show debug logging"
    )
):
    """AWS Cost Monitor CLI."""
    setup_logging(verbose)
    state.config_path = config
    state.db_override = db
    state._settings = None
    if ctx.invoked_subcommand is None:
        console.print("AWS Cost Monitor - Use --help to see available commands")


@app.command()
def init():
    """Initialize the cost database."""
    try:
        initialize_schema(state.db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except HANDLED_ERRORS as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def sync(
    full: bool = typer.Option(
        False,
        "--full",
        "-f",
        help="Re-fetch the whole 60-day lookback window"
    )
):
    """Fetch new and corrected daily costs from AWS Cost Explorer."""
    try:
        result = _sync_service().refresh(force_full_sync=full)
    except KeyboardInterrupt:
        console.print("[yellow]Sync interrupted[/]")
        sys.exit(EXIT_CODE_FAIL)
    except HANDLED_ERRORS as e:
        _fail(e)
    _display_sync_result(result)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def dashboard(
    exclude_credits: bool = typer.Option(
        False,
        "--exclude-credits",
        "-x",
        help="Show gross cost without credits and refunds"
    )
):
    """Month-to-date and full-month overview."""
    try:
        service = _analysis(exclude_credits)
        _require_data(service)
        _display_dashboard(service)
    except HANDLED_ERRORS as e:
        _fail(e)


@app.command()
def days(
    exclude_credits: bool = typer.Option(
        False, "--exclude-credits", "-x", help="Show gross cost without credits and refunds"
    )
):
    """Day-by-day comparison of this month against last month."""
    try:
        service = _analysis(exclude_credits)
        _require_data(service)
        comparisons = service.day_by_day_comparison()
    except HANDLED_ERRORS as e:
        _fail(e)

    table = Table(title="Day-by-Day")
    for header in ("Day", "This Month", "Last Month", "Difference", "Change"):
        table.add_column(header, justify="right")

    this_total = Decimal("0")
    last_total = Decimal("0")
    for day in comparisons:
        this_total += day.this_month
        last_total += day.last_month
        table.add_row(
            str(day.day_of_month),
            _format_currency(day.this_month),
            _format_currency(day.last_month),
            _format_difference(day.difference),
            _format_percent(day.percent_change, day.last_month),
        )

    total = create_comparison("Total", this_total, last_total)
    table.add_row(
        "[bold]Total[/]",
        _format_currency(total.current),
        _format_currency(total.previous),
        _format_difference(total.difference),
        _format_percent(total.percent_change, total.previous),
    )
    console.print(table)


@app.command()
def services(
    exclude_credits: bool = typer.Option(
        False, "--exclude-credits", "-x", help="Show gross cost without credits and refunds"
    )
):
    """Per-service comparison across the four windows."""
    try:
        service = _analysis(exclude_credits)
        _require_data(service)
        _display_dimension_table("Service Summary", service, service.service_comparison())
    except HANDLED_ERRORS as e:
        _fail(e)


@app.command()
def accounts(
    exclude_credits: bool = typer.Option(
        False, "--exclude-credits", "-x", help="Show gross cost without credits and refunds"
    )
):
    """Per-account comparison across the four windows."""
    try:
        service = _analysis(exclude_credits)
        _require_data(service)
        _display_dimension_table("Account Summary", service, service.account_comparison())
    except HANDLED_ERRORS as e:
        _fail(e)


@app.command()
def breakdown(
    last_month: bool = typer.Option(
        False, "--last-month", "-l", help="Show last full month instead of this month"
    ),
    exclude_credits: bool = typer.Option(
        False, "--exclude-credits", "-x", help="Show gross cost without credits and refunds"
    )
):
    """Per-account totals split by service."""
    try:
        service = _analysis(exclude_credits)
        _require_data(service)
        period = Period.LAST_MONTH if last_month else Period.THIS_MONTH
        summaries = service.account_summaries(period)
    except HANDLED_ERRORS as e:
        _fail(e)

    title = "Last Month" if last_month else "This Month"
    for summary in summaries:
        console.print(f"\n[bold]{_truncate(summary.account_name)}[/] ({summary.account_id}): "
                      f"{_format_currency(summary.total_cost)}")
        ordered = sorted(summary.cost_by_service.items(), key=lambda item: item[1], reverse=True)
        for name, cost in ordered:
            console.print(f"  {_truncate(name)}: {_format_currency(cost)}")
    if not summaries:
        console.print(f"[dim]No costs recorded for {title.lower()}.[/]")


@app.command("credits")
def credits_command():
    """Credits and refunds applied this month and last month."""
    try:
        service = _analysis()
        _require_data(service)
        summary = service.credits_summary()
    except HANDLED_ERRORS as e:
        _fail(e)

    console.print("\n[bold]Credits[/bold]")
    console.print("-" * 40)
    console.print(f"Month-to-date credits: {_format_currency(summary.mtd_credits)}")
    console.print(f"Last month credits: {_format_currency(summary.last_month_credits)}")


@app.command()
def watch(
    interval: Optional[int] = typer.Option(
        None,
        "--interval",
        "-i",
        help="Minutes between refreshes (defaults to refresh_interval_minutes)"
    ),
    count: int = typer.Option(
        0,
        "--count",
        "-n",
        help="Stop after this many refreshes (0 runs until interrupted)"
    )
):
    """Refresh on a timer and redraw the dashboard after each sync."""
    try:
        minutes = interval or state.settings.refresh_interval_minutes
        if minutes <= 0:
            raise ValueError("--interval must be > 0")
        notifications = NotificationCenter()
        analysis = _analysis()
        notifications.subscribe_data_refreshed(lambda result: _display_dashboard(analysis, result))
        syncer = _sync_service(notifications)
    except HANDLED_ERRORS as e:
        _fail(e)

    runs = 0
    try:
        while True:
            try:
                syncer.refresh()
            except (TransientFetchError, PersistenceError) as e:
                console.print(f"[yellow]Refresh failed, retrying in {minutes} min:[/] {e}")
            runs += 1
            if count and runs >= count:
                break
            time.sleep(minutes * 60)
    except KeyboardInterrupt:
        console.print("\nStopped watching")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def demo():
    """Seed the database with demo costs for trying the reports offline."""
    try:
        written = seed_demo_data(state.db_path, utc_today())
    except HANDLED_ERRORS as e:
        _fail(e)
    console.print(f"[green]✓[/] Inserted {written} demo cost records")


def _format_currency(amount: Decimal) -> str:
    """Format currency with sign, dollar symbol and thousands separators."""
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def _format_percent(percent: Decimal, previous: Decimal) -> str:
    """Signed percentage, or '-' when there is nothing to compare against."""
    if previous <= 0:
        return "-"
    return f"{percent:+.1f}%"


def _format_difference(difference: Decimal) -> str:
    if difference == 0:
        return "-"
    arrow = "↑" if difference >= 0 else "↓"
    return f"{arrow} ${abs(difference):,.2f}"


def _direction(is_up: bool, previous: Decimal) -> str:
    if previous <= 0:
        return "-"
    return "↑" if is_up else "↓"


def _truncate(name: str) -> str:
    if len(name) > MAX_NAME_LENGTH:
        return name[:MAX_NAME_LENGTH - 3] + "..."
    return name


def _display_sync_result(result: SyncResult) -> None:
    """Display a completed sync run."""
    console.print("\n[bold]Cost Sync Result[/bold]")
    console.print("-" * 40)
    console.print(f"Range: {result.sync_from.isoformat()} to {result.sync_to.isoformat()}")
    console.print(f"Records fetched: {result.facts_fetched}")
    if result.missing_dates:
        console.print(f"Days missing before sync: {len(result.missing_dates)}")
    if result.forced:
        console.print("Mode: full sync")


def _display_comparison(comparison: ComparisonResult) -> None:
    console.print(f"\n[bold]{comparison.label}[/bold]")
    console.print(f"Current: {_format_currency(comparison.current)}")
    console.print(f"Previous: {_format_currency(comparison.previous)}")
    console.print(f"Change: {_format_difference(comparison.difference)} "
                  f"({_format_percent(comparison.percent_change, comparison.previous)})")


def _display_dashboard(service: CostAnalysisService, result: Optional[SyncResult] = None) -> None:
    """Display the dashboard overview."""
    console.print("\n[bold]AWS Cost Dashboard[/bold]")
    console.print("-" * 40)
    if result is not None:
        console.print(f"Last updated: {result.completed_at:%Y-%m-%d %H:%M:%S} UTC")
    if service.include_credits:
        console.print("[green]Including Credits (Net Cost)[/]")
    else:
        console.print("[yellow]Excluding Credits (Gross Cost)[/]")

    _display_comparison(service.month_to_date_comparison())
    _display_comparison(service.full_month_comparison())

    top_accounts = service.account_summaries(Period.THIS_MONTH)
    if top_accounts:
        top = top_accounts[0]
        console.print(f"\nTop account: {_truncate(top.account_name)} "
                      f"({_format_currency(top.total_cost)})")


def _display_dimension_table(
    title: str,
    service: CostAnalysisService,
    rows: List[DimensionComparison]
) -> None:
    """Display a service or account comparison table."""
    ranges = service.date_ranges()
    table = Table(title=title)
    table.add_column("Name")
    table.add_column(f"MTD\n{ranges.mtd}", justify="right")
    table.add_column(f"Last MTD\n{ranges.last_mtd}", justify="right")
    table.add_column("Change", justify="right")
    table.add_column(f"30 Days\n{ranges.rolling_30}", justify="right")
    table.add_column(f"Prev 30 Days\n{ranges.previous_30}", justify="right")
    table.add_column("Change", justify="right")

    for row in rows:
        table.add_row(
            _truncate(row.name),
            _format_currency(row.mtd_cost),
            _format_currency(row.last_month_same_day_cost),
            f"{_direction(row.mtd_is_up, row.last_month_same_day_cost)} "
            f"{_format_percent(row.mtd_change_percent, row.last_month_same_day_cost)}",
            _format_currency(row.rolling_30_cost),
            _format_currency(row.previous_30_cost),
            f"{_direction(row.rolling_is_up, row.previous_30_cost)} "
            f"{_format_percent(row.rolling_change_percent, row.previous_30_cost)}",
        )
    console.print(table)


if __name__ == "__main__":
    app()
