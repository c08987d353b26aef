"""
CLI interface for AI Automod.

Operator commands for the analysis core: initialize the store, inspect the
budget and circuits, reset a circuit, run a one-off analysis and clear a
cached result.
"""

import asyncio
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from ai_automod.config.loader import KNOWN_PROVIDERS, AutomodConfig, load_config
from ai_automod.core.analyzer import build_analyzer
from ai_automod.core.circuit_breaker import CircuitBreaker
from ai_automod.core.cost_tracker import CostTracker
from ai_automod.core.field_access import FieldAccessor
from ai_automod.core.models import AnalysisOutcome, CircuitState, TrustTier
from ai_automod.core.pricing import minor_units_to_usd
from ai_automod.logging_config import configure_logging
from ai_automod.storage.kv import SQLiteStore

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

SUMMARY_FIELDS = ("overallRisk", "recommendedAction", "scammerRisk.level", "datingIntent.detected")

ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to YAML configuration (defaults are used when omitted)",
)


def _load(config_path: Optional[str]) -> AutomodConfig:
    config = load_config(config_path) if config_path else AutomodConfig.default()
    configure_logging(config.log_level)
    return config


def _store(config: AutomodConfig) -> SQLiteStore:
    store = SQLiteStore(config.store_path)
    store.initialize_schema()
    return store


def _format_currency(units: int) -> str:
    """Format minor units as dollars."""
    return f"${minor_units_to_usd(units):,.2f}"


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """AI Automod CLI."""
    if ctx.invoked_subcommand is None:
        console.print("AI Automod - Use --help to see available commands")


@app.command()
def init(config_path: Optional[str] = ConfigOption):
    """Initialize the key-value store."""
    try:
        config = _load(config_path)
        _store(config)
        console.print(f"[green]✓[/] Store initialized at {config.store_path}")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing store:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def budget(config_path: Optional[str] = ConfigOption):
    """Show current daily and monthly spend against the limits."""
    try:
        config = _load(config_path)
        tracker = CostTracker(_store(config), config.budget)
        status = asyncio.run(tracker.get_budget_status())
        spend = asyncio.run(tracker.get_provider_spend(KNOWN_PROVIDERS))
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title="AI Budget")
    table.add_column("Period")
    table.add_column("Spent", justify="right")
    table.add_column("Limit", justify="right")
    table.add_column("Remaining", justify="right")
    table.add_column("Used", justify="right")
    table.add_row(
        "Daily", _format_currency(status.daily_spent), _format_currency(status.daily_limit),
        _format_currency(status.daily_remaining), f"{status.daily_percent_used:.1f}%",
    )
    table.add_row(
        "Monthly", _format_currency(status.monthly_spent), _format_currency(status.monthly_limit),
        _format_currency(status.monthly_remaining), f"{status.monthly_percent_used:.1f}%",
    )
    console.print(table)

    for provider, units in spend.items():
        if units:
            console.print(f"{provider}: {_format_currency(units)} today")

    if status.alert_level is not None:
        console.print(f"[yellow]Alert:[/] {int(round(status.alert_level * 100))}% of daily budget used")
    if status.over_budget:
        console.print("[red]Budget exhausted - AI analysis is paused[/]")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def circuits(config_path: Optional[str] = ConfigOption):
    """Show the circuit breaker state for every provider."""
    try:
        config = _load(config_path)
        breaker = CircuitBreaker(_store(config), config.circuit_breaker)
        providers = list(config.providers) or list(KNOWN_PROVIDERS)
        statuses = [asyncio.run(breaker.get_state(p)) for p in providers]
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    colors = {CircuitState.CLOSED: "green", CircuitState.HALF_OPEN: "yellow", CircuitState.OPEN: "red"}
    table = Table(title="Provider Circuits")
    table.add_column("Provider")
    table.add_column("State")
    table.add_column("Failures", justify="right")
    table.add_column("Successes", justify="right")
    for status in statuses:
        color = colors[status.state]
        table.add_row(
            status.provider, f"[{color}]{status.state.value}[/]",
            str(status.failure_count), str(status.success_count),
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command("reset-circuit")
def reset_circuit(
    provider: str = typer.Argument(..., help="Provider id to reset"),
    config_path: Optional[str] = ConfigOption,
):
    """Manually close a provider's circuit."""
    if provider not in KNOWN_PROVIDERS:
        console.print(f"[red]Unknown provider:[/] {provider}")
        sys.exit(EXIT_CODE_FAIL)
    try:
        config = _load(config_path)
        breaker = CircuitBreaker(_store(config), config.circuit_breaker)
        asyncio.run(breaker.reset(provider))
        console.print(f"[green]✓[/] Circuit for {provider} reset to CLOSED")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def analyze(
    subject: str = typer.Argument(..., help="Subject id (e.g. the author's username)"),
    text: str = typer.Argument(..., help="Submission text to analyze"),
    tier: str = typer.Option("low", "--tier", "-t", help="Trust tier: high, medium, low, known-bad"),
    config_path: Optional[str] = ConfigOption,
):
    """
    Run one analysis through the configured providers.

    Exits non-zero when the outcome is degraded and needs human review.
    """
    try:
        trust_tier = TrustTier(tier.replace("-", "_"))
    except ValueError:
        console.print(f"[red]Invalid trust tier:[/] {tier}")
        sys.exit(EXIT_CODE_FAIL)

    try:
        config = _load(config_path)
        analyzer = build_analyzer(config, _store(config))
        outcome = asyncio.run(analyzer.analyze(subject, text, trust_tier))
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    _display_outcome(outcome)
    sys.exit(EXIT_CODE_FAIL if outcome.needs_review else EXIT_CODE_PASS)


@app.command("clear-cache")
def clear_cache(
    subject: str = typer.Argument(..., help="Subject id whose cached analysis to drop"),
    config_path: Optional[str] = ConfigOption,
):
    """Drop the cached analysis for a subject."""
    try:
        config = _load(config_path)
        analyzer = build_analyzer(config, _store(config), providers={})
        asyncio.run(analyzer.clear_cache(subject))
        console.print(f"[green]✓[/] Cache cleared for {subject}")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


def _display_outcome(outcome: AnalysisOutcome):
    """Display an analysis outcome."""
    console.print("\n[bold]AI Analysis Result[/bold]")
    console.print("-" * 40)
    console.print(f"Disposition: {outcome.disposition.value}")
    console.print(f"Provider: {outcome.provider}")
    console.print(f"Cost: {_format_currency(outcome.cost)}")
    console.print(f"Correlation id: {outcome.correlation_id}")

    if outcome.needs_review:
        detail = f" ({outcome.error_type})" if outcome.error_type else ""
        console.print(f"\n[yellow]Needs manual review[/]{detail}")
        return

    accessor = FieldAccessor()
    for path in SUMMARY_FIELDS:
        console.print(f"{path}: {accessor.get(outcome.result.findings, path)}")


if __name__ == "__main__":
    app()
