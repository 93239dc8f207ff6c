"""
CLI interface for Claudelytics.

Provides command-line access to every report the engine produces.
"""

import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from claudelytics.config.loader import AppConfig, load_config
from claudelytics.core.burn_rate import BurnRateCalculator
from claudelytics.core.pricing import DEFAULT_PRICES, MILLION, build_cost_calculator
from claudelytics.core.pricing_cache import PricingCache
from claudelytics.core.projections import ProjectionCalculator
from claudelytics.core.realtime import BudgetConfig
from claudelytics.core.reports import SortField, SortOrder
from claudelytics.core.session_blocks import SessionBlockConfig
from claudelytics.core.token_usage import TokenUsage
from claudelytics.errors import ClaudelyticsError
from claudelytics.export.csv_export import export_reports
from claudelytics.ingest.driver import DEFAULT_WORKERS, EngineOptions, EngineResult, UsageEngine
from claudelytics.serialization import to_json

app = typer.Typer(help="Usage analytics for local coding assistant logs.")
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


@dataclass
class CliState:
    """Options shared by every command."""
    config: AppConfig
    since: Optional[str] = None
    until: Optional[str] = None
    model: Optional[str] = None
    json_output: bool = False


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/] {message}")
    sys.exit(EXIT_CODE_FAIL)


def _state(ctx: typer.Context) -> CliState:
    return ctx.obj


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    path: Optional[Path] = typer.Option(None, "--path", "-p", help="Root of the log directory (contains projects/)"),
    since: Optional[str] = typer.Option(None, "--since", "-s", help="First date to include (YYYYMMDD)"),
    until: Optional[str] = typer.Option(None, "--until", "-u", help="Last date to include (YYYYMMDD)"),
    today: bool = typer.Option(False, "--today", help="Only include today's usage (UTC)"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Filter by model name, family or alias"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output JSON instead of tables"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to a YAML config file"),
    pricing_file: Optional[str] = typer.Option(None, "--pricing-file", help="Pricing override file (YAML or JSON)"),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="Number of parser threads (1-256)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """Claudelytics CLI."""
    _configure_logging(verbose)
    try:
        app_config = load_config(config).with_overrides(
            claude_path=path,
            pricing_file=pricing_file,
            workers=workers,
        )
    except ClaudelyticsError as e:
        _fail(str(e))

    if today:
        since = until = _now().strftime("%Y%m%d")

    ctx.obj = CliState(
        config=app_config,
        since=since,
        until=until,
        model=model,
        json_output=json_output,
    )
    if ctx.invoked_subcommand is None:
        console.print("Claudelytics - Use --help to see available commands")


def _run_engine(state: CliState, session_blocks: Optional[SessionBlockConfig] = None) -> EngineResult:
    config = state.config
    options = EngineOptions(
        root=config.claude_path,
        since=state.since,
        until=state.until,
        model=state.model,
        workers=config.workers or DEFAULT_WORKERS,
        pricing_file=config.pricing_file,
        use_pricing_cache=True,
        session_blocks=session_blocks or config.session_blocks,
    )
    try:
        return UsageEngine(options).run()
    except ClaudelyticsError as e:
        _fail(str(e))


def _print_no_data() -> None:
    console.print("\n[bold yellow]No usage data found[/]")
    console.print("Check --path, or widen the --since/--until range.\n")


def _emit_json(report) -> None:
    typer.echo(to_json(report))


def _format_currency(amount: float) -> str:
    """Format currency with proper symbols and formatting."""
    return f"${amount:,.2f}"


def _format_tokens(count: float) -> str:
    return f"{int(count):,}"


def _usage_columns(table: Table) -> None:
    for name in ("Input", "Output", "Cache Create", "Cache Read", "Total Tokens", "Cost"):
        table.add_column(name, justify="right")


def _usage_cells(usage: TokenUsage) -> List[str]:
    return [
        _format_tokens(usage.input_tokens),
        _format_tokens(usage.output_tokens),
        _format_tokens(usage.cache_creation_tokens),
        _format_tokens(usage.cache_read_tokens),
        _format_tokens(usage.total_tokens),
        _format_currency(usage.total_cost),
    ]


def _totals_row(table: Table, leading: int, totals: TokenUsage) -> None:
    cells = ["[bold]Total[/]"] + [""] * (leading - 1) + _usage_cells(totals)
    table.add_row(*cells, style="bold")


SortByOption = typer.Option(None, "--sort-by", case_sensitive=False, help="Sort field")
SortOrderOption = typer.Option(None, "--sort-order", case_sensitive=False, help="asc or desc (default desc)")


@app.command()
def daily(
    ctx: typer.Context,
    sort_by: Optional[SortField] = SortByOption,
    sort_order: Optional[SortOrder] = SortOrderOption,
):
    """Show usage per day."""
    state = _state(ctx)
    report = _run_engine(state).daily_report(sort_by, sort_order)
    if state.json_output:
        _emit_json(report)
        sys.exit(EXIT_CODE_PASS)
    if not report.daily:
        _print_no_data()
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Daily Usage")
    table.add_column("Date")
    _usage_columns(table)
    for row in report.daily:
        table.add_row(row.date, *_usage_cells(row.usage))
    _totals_row(table, 1, report.totals)
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def session(
    ctx: typer.Context,
    sort_by: Optional[SortField] = SortByOption,
    sort_order: Optional[SortOrder] = SortOrderOption,
):
    """Show usage per session."""
    state = _state(ctx)
    report = _run_engine(state).session_report(sort_by, sort_order)
    if state.json_output:
        _emit_json(report)
        sys.exit(EXIT_CODE_PASS)
    if not report.sessions:
        _print_no_data()
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Session Usage")
    table.add_column("Project")
    table.add_column("Session")
    table.add_column("Last Activity")
    _usage_columns(table)
    for row in report.sessions:
        table.add_row(row.project_path, row.session_id, row.last_activity, *_usage_cells(row.usage))
    _totals_row(table, 3, report.totals)
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def monthly(
    ctx: typer.Context,
    sort_by: Optional[SortField] = SortByOption,
    sort_order: Optional[SortOrder] = SortOrderOption,
):
    """Show usage per calendar month."""
    state = _state(ctx)
    report = _run_engine(state).monthly_report(sort_by, sort_order)
    if state.json_output:
        _emit_json(report)
        sys.exit(EXIT_CODE_PASS)
    if not report.monthly:
        _print_no_data()
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Monthly Usage")
    table.add_column("Month")
    table.add_column("Days", justify="right")
    table.add_column("Avg/Day", justify="right")
    _usage_columns(table)
    for row in report.monthly:
        table.add_row(
            f"{row.month} {row.year}",
            str(row.days_active),
            _format_currency(row.avg_daily_cost),
            *_usage_cells(row.usage),
        )
    _totals_row(table, 3, report.totals)
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def blocks(ctx: typer.Context):
    """Show usage in fixed 5-hour billing blocks (UTC)."""
    state = _state(ctx)
    report = _run_engine(state).billing_block_report()
    if state.json_output:
        _emit_json(report)
        sys.exit(EXIT_CODE_PASS)
    if not report.blocks:
        _print_no_data()
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="5-Hour Billing Blocks (UTC)")
    table.add_column("Date")
    table.add_column("Block")
    table.add_column("Sessions", justify="right")
    _usage_columns(table)
    for block in report.blocks:
        table.add_row(block.date, block.time_range, str(block.session_count), *_usage_cells(block.usage))
    _totals_row(table, 3, report.total_usage)
    console.print(table)

    if report.peak_block is not None:
        peak = report.peak_block
        console.print(
            f"Peak block: {peak.date} {peak.time_range} "
            f"({_format_tokens(peak.usage.total_tokens)} tokens, {_format_currency(peak.usage.total_cost)})"
        )
    console.print(
        f"Average per active block: {_format_tokens(report.average_per_block.total_tokens)} tokens, "
        f"{_format_currency(report.average_per_block.total_cost)}"
    )
    sys.exit(EXIT_CODE_PASS)


@app.command("session-blocks")
def session_blocks(
    ctx: typer.Context,
    block_hours: Optional[int] = typer.Option(None, "--block-hours", help="Block length in hours (1-24)"),
    token_limit: Optional[int] = typer.Option(None, "--token-limit", help="Token limit per block"),
    cost_limit: Optional[float] = typer.Option(None, "--cost-limit", help="Cost limit per block (USD)"),
):
    """Show usage in configurable N-hour session blocks."""
    state = _state(ctx)
    base = state.config.session_blocks
    try:
        config = SessionBlockConfig(
            block_hours=block_hours if block_hours is not None else base.block_hours,
            token_limit=token_limit if token_limit is not None else base.token_limit,
            cost_limit=cost_limit if cost_limit is not None else base.cost_limit,
        )
    except ClaudelyticsError as e:
        _fail(str(e))

    report = _run_engine(state, session_blocks=config).session_block_report(_now())
    if state.json_output:
        _emit_json(report)
        sys.exit(EXIT_CODE_PASS)
    if not report.blocks:
        _print_no_data()
        sys.exit(EXIT_CODE_PASS)

    table = Table(title=f"{config.block_hours}-Hour Session Blocks (UTC)")
    table.add_column("Start")
    table.add_column("End")
    table.add_column("Active")
    table.add_column("Sessions", justify="right")
    _usage_columns(table)
    for block in report.blocks:
        table.add_row(
            block.start_time.strftime("%Y-%m-%d %H:%M"),
            block.end_time.strftime("%Y-%m-%d %H:%M"),
            "[green]●[/]" if block.is_active else "",
            str(block.session_count),
            *_usage_cells(block.usage),
        )
    _totals_row(table, 4, report.total_usage)
    console.print(table)
    console.print(
        f"Blocks: {report.total_blocks} total, {report.active_blocks} active, "
        f"{report.recent_blocks} in the last 30 days"
    )

    rate = report.current_burn_rate
    if rate is not None:
        console.print(
            f"Current block burn rate: {_format_tokens(rate.tokens_per_hour)} tok/hr "
            f"({_format_currency(rate.cost_per_hour)}/hr)"
        )
        if rate.hours_until_budget_limit is not None:
            console.print(f"Limit reached in: {rate.hours_until_budget_limit:.1f} hours")
    sys.exit(EXIT_CODE_PASS)


@app.command("burn-rate")
def burn_rate(
    ctx: typer.Context,
    hours: int = typer.Option(24, "--hours", help="Look-back window in hours"),
):
    """Show the current burn rate over a look-back window."""
    state = _state(ctx)
    if hours <= 0:
        _fail("--hours must be > 0")

    result = _run_engine(state)
    rate = BurnRateCalculator.from_timeline(result.timeline).calculate_burn_rate(hours, _now())
    if state.json_output:
        typer.echo(to_json(rate))
        sys.exit(EXIT_CODE_PASS)
    if rate is None:
        console.print(f"\n[bold yellow]No usage in the last {hours} hours[/]\n")
        sys.exit(EXIT_CODE_PASS)

    arrow = "↑" if rate.trend_percentage > 0 else "↓" if rate.trend_percentage < 0 else "→"
    console.print(f"\n[bold]Burn Rate (last {hours}h)[/bold]")
    console.print("-" * 40)
    console.print(
        f"Rate: {_format_tokens(rate.tokens_per_hour)} tok/hr "
        f"(${rate.cost_per_hour:.4f}/hr) {arrow} {abs(rate.trend_percentage):.1f}%"
    )
    console.print(
        f"Projected: {_format_tokens(rate.projected_daily_tokens)} tokens/day "
        f"({_format_currency(rate.projected_daily_cost)}/day)"
    )
    console.print(f"Monthly projection: {_format_currency(rate.projected_monthly_cost)}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def projections(
    ctx: typer.Context,
    days: int = typer.Option(30, "--days", help="Number of days to project"),
    cost_limit: Optional[float] = typer.Option(None, "--cost-limit", help="Monthly cost limit (USD)"),
    token_limit: Optional[int] = typer.Option(None, "--token-limit", help="Monthly token limit"),
):
    """Project future usage from the last 30 days."""
    state = _state(ctx)
    try:
        calculator = ProjectionCalculator(
            projection_days=days,
            token_limit=token_limit,
            cost_limit=cost_limit if cost_limit is not None else state.config.budget.monthly,
        )
    except ClaudelyticsError as e:
        _fail(str(e))

    result = _run_engine(state)
    today = _now().date()
    cost = result.projections(today, calculator)
    tokens = result.token_projections(today, calculator)
    if state.json_output:
        typer.echo(to_json({"cost": cost, "tokens": tokens}))
        sys.exit(EXIT_CODE_PASS)

    console.print("\n[bold]Usage Projections[/bold]")
    console.print("-" * 40)
    console.print(f"Daily average: {_format_currency(cost.daily_average)}")
    console.print(f"Weekly: {_format_currency(cost.weekly_average)}")
    console.print(f"Monthly: {_format_currency(cost.monthly_average)}")
    console.print(f"Trend: {cost.trend.value} ({cost.growth_rate:+.1f}%/day)")
    console.print(f"Estimated next 30 days: {_format_currency(cost.estimated_monthly_cost)}")
    if cost.days_until_limit is not None:
        console.print(f"Cost limit reached in {cost.days_until_limit} days ({cost.limit_date})")
    if tokens.days_until_token_limit is not None:
        console.print(f"Token limit reached in {tokens.days_until_token_limit} days ({tokens.token_limit_date})")

    if cost.projections:
        table = Table(title="Projection")
        table.add_column("Date")
        table.add_column("Cost", justify="right")
        table.add_column("Range (95%)", justify="right")
        table.add_column("Confidence", justify="right")
        for p in cost.projections[:7]:
            table.add_row(
                p.date.isoformat(),
                _format_currency(p.value),
                f"{_format_currency(p.lower_bound)} - {_format_currency(p.upper_bound)}",
                f"{p.confidence:.0%}",
            )
        console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def analytics(
    ctx: typer.Context,
    daily_budget: Optional[float] = typer.Option(None, "--daily-budget", help="Daily budget (USD)"),
    monthly_budget: Optional[float] = typer.Option(None, "--monthly-budget", help="Monthly budget (USD)"),
    yearly_budget: Optional[float] = typer.Option(None, "--yearly-budget", help="Yearly budget (USD)"),
    alert_threshold: Optional[float] = typer.Option(None, "--alert-threshold", help="Alert at this fraction of a budget"),
):
    """Show burn rates, budget projections and alerts."""
    state = _state(ctx)
    base = state.config.budget
    try:
        budget = BudgetConfig(
            daily=daily_budget if daily_budget is not None else base.daily,
            monthly=monthly_budget if monthly_budget is not None else base.monthly,
            yearly=yearly_budget if yearly_budget is not None else base.yearly,
            alert_threshold=alert_threshold if alert_threshold is not None else base.alert_threshold,
        )
    except ClaudelyticsError as e:
        _fail(str(e))

    report = _run_engine(state).realtime_report(_now(), budget)
    if state.json_output:
        _emit_json(report)
        sys.exit(EXIT_CODE_PASS)

    rates = report.burn_rates
    console.print("\n[bold]Burn Rates[/bold]")
    console.print("-" * 40)
    console.print(
        f"Current hour: {_format_tokens(rates.current_hour.tokens_per_hour)} tok/hr "
        f"(${rates.current_hour.cost_per_hour:.4f}/hr)"
    )
    console.print(
        f"24-hour avg: {_format_tokens(rates.last_24_hours.tokens_per_hour)} tok/hr "
        f"(${rates.last_24_hours.cost_per_hour:.4f}/hr)"
    )
    console.print(
        f"Peak: {_format_currency(rates.peak_burn_rate.cost_per_hour)}/hr at "
        f"{rates.peak_burn_rate.occurred_at.strftime('%Y-%m-%d %H:%M')}"
    )

    console.print("\n[bold]Budget Projections[/bold]")
    console.print("-" * 40)
    budget_projections = report.budget_projections
    for label, projection in (
        ("Daily", budget_projections.daily_projection),
        ("Monthly", budget_projections.monthly_projection),
        ("Yearly", budget_projections.yearly_projection),
    ):
        if projection.budget_limit is None:
            console.print(f"{label}: {_format_currency(projection.estimated_cost)} (no limit set)")
        else:
            status = "[red]over[/]" if projection.will_exceed else "[green]ok[/]"
            console.print(
                f"{label}: {_format_currency(projection.estimated_cost)} / "
                f"{_format_currency(projection.budget_limit)} "
                f"({projection.utilization_percentage:.1f}%) {status}"
            )
    limits = budget_projections.time_to_limits
    if limits.hours_to_daily_limit is not None:
        console.print(f"Daily limit in: {limits.hours_to_daily_limit:.1f} hours")
    if limits.days_to_monthly_limit is not None:
        console.print(f"Monthly limit in: {limits.days_to_monthly_limit:.1f} days")

    metrics = report.session_metrics
    console.print("\n[bold]Sessions[/bold]")
    console.print("-" * 40)
    console.print(f"Active sessions: {metrics.active_session_count}")
    console.print(
        f"Avg per session: {_format_tokens(metrics.avg_tokens_per_session)} tokens "
        f"({_format_currency(metrics.avg_cost_per_session)})"
    )
    console.print(f"Peak hours (UTC): {', '.join(f'{h:02d}:00' for h in metrics.peak_usage_hours) or '-'}")
    console.print(f"Efficiency score: {metrics.efficiency_score:.1f}/100")

    if report.alerts:
        console.print("\n[bold]Alerts[/bold]")
        console.print("-" * 40)
        colors = {"critical": "red", "warning": "yellow", "info": "blue"}
        for alert in report.alerts:
            color = colors[alert.severity.value]
            console.print(f"[{color}]{alert.severity.value.upper()}[/] {alert.message}")
            if alert.recommended_action:
                console.print(f"   → {alert.recommended_action}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def patterns(
    ctx: typer.Context,
    cost_threshold: float = typer.Option(10.0, "--cost-threshold", help="Flag sessions costing more than this"),
):
    """Show time-of-day, weekday, duration and frequency patterns."""
    state = _state(ctx)
    report = _run_engine(state).pattern_report(_now().date(), cost_threshold)
    if state.json_output:
        _emit_json(report)
        sys.exit(EXIT_CODE_PASS)
    if not report.time_of_day.hourly_usage:
        _print_no_data()
        sys.exit(EXIT_CODE_PASS)

    tod = report.time_of_day
    table = Table(title="Usage by Hour (UTC, last activity)")
    table.add_column("Hour")
    table.add_column("Sessions", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right")
    for hour, metrics in tod.hourly_usage.items():
        table.add_row(
            f"{hour:02d}:00",
            str(metrics.session_count),
            _format_tokens(metrics.usage.total_tokens),
            _format_currency(metrics.usage.total_cost),
        )
    console.print(table)
    console.print(f"Peak hour: {tod.peak_hour:02d}:00, quietest: {tod.off_peak_hour:02d}:00")
    console.print(
        f"Business hours: {_format_currency(tod.business_hours_usage.total_cost)}, "
        f"after hours: {_format_currency(tod.after_hours_usage.total_cost)}"
    )

    dow = report.day_of_week
    console.print(
        f"Most active day: {dow.most_active_day}, least active: {dow.least_active_day}, "
        f"weekend/weekday ratio: {dow.weekend_vs_weekday_ratio:.2f}"
    )

    dist = report.durations.duration_distribution
    console.print(
        f"Durations: <5m {dist.under_5_min}, 5-30m {dist.min_5_to_30}, 30-60m {dist.min_30_to_60}, "
        f"1-3h {dist.hour_1_to_3}, >3h {dist.over_3_hours}"
    )

    freq = report.frequency
    console.print(
        f"Sessions/day: {freq.sessions_per_day:.2f}, streak: {freq.current_streak} "
        f"(longest {freq.longest_streak})"
    )
    above = report.cost_efficiency.sessions_above_threshold
    if above:
        console.print(f"Sessions above {_format_currency(cost_threshold)}: {len(above)}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def export(
    ctx: typer.Context,
    daily_only: bool = typer.Option(False, "--daily", help="Export the daily report"),
    sessions_only: bool = typer.Option(False, "--sessions", help="Export the session report"),
    summary_only: bool = typer.Option(False, "--summary", help="Export the summary"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output base path"),
):
    """Export reports to CSV. Without a selection flag, exports all three."""
    state = _state(ctx)
    result = _run_engine(state)
    select_all = not (daily_only or sessions_only or summary_only)

    if output is None:
        directory = state.config.export_directory or Path.cwd()
        output = directory / f"claudelytics_{_now().strftime('%Y%m%d')}"

    try:
        written = export_reports(
            result.daily_report(),
            result.session_report(),
            output,
            include_daily=select_all or daily_only,
            include_sessions=select_all or sessions_only,
            include_summary=select_all or summary_only,
        )
    except OSError as e:
        _fail(f"Could not write export: {e}")

    for kind, path in written.items():
        console.print(f"[green]✓[/] {kind} report written to {path}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def pricing(
    ctx: typer.Context,
    model: Optional[str] = typer.Option(None, "--model", help="Show the pricing resolved for this model"),
    write_cache: bool = typer.Option(False, "--write-cache", help="Write the pricing table to the offline cache"),
    clear_cache: bool = typer.Option(False, "--clear-cache", help="Delete the offline pricing cache"),
):
    """Show the pricing table and manage the offline pricing cache."""
    state = _state(ctx)
    cache = PricingCache()

    if clear_cache:
        removed = cache.clear()
        console.print("[green]✓[/] Pricing cache cleared" if removed else "No pricing cache to clear")
        sys.exit(EXIT_CODE_PASS)
    if write_cache:
        try:
            path = cache.save()
        except OSError as e:
            _fail(f"Could not write pricing cache: {e}")
        console.print(f"[green]✓[/] Pricing cache written to {path}")
        sys.exit(EXIT_CODE_PASS)

    try:
        calculator = build_cost_calculator(state.config.pricing_file)
    except ClaudelyticsError as e:
        _fail(str(e))

    if model:
        resolved = calculator.find_model_pricing(model)
        if resolved is None:
            console.print(f"[yellow]No pricing found for {model}[/]")
            sys.exit(EXIT_CODE_FAIL)
        entries = [(model, resolved)]
    else:
        entries = sorted(DEFAULT_PRICES.items())

    table = Table(title="Pricing (USD per million tokens)")
    for name in ("Model", "Input", "Output", "Cache Write", "Cache Read"):
        table.add_column(name, justify="left" if name == "Model" else "right")
    for name, p in entries:
        rates = (
            p.input_cost_per_token,
            p.output_cost_per_token,
            p.cache_creation_cost_per_token,
            p.cache_read_cost_per_token,
        )
        table.add_row(name, *(f"${rate * MILLION:.2f}" if rate is not None else "-" for rate in rates))
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
