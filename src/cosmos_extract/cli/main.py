"""Main CLI entry point."""

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

import structlog
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from cosmos_extract.config.settings import RunConfig, Settings, load_settings
from cosmos_extract.services._helpers import ensure_utc
from cosmos_extract.services.enums import CommissionFailurePolicy
from cosmos_extract.services.errors import (
    ConfigurationError,
    ExportError,
    GatewayError,
    ReportRunError,
)

app = typer.Typer(
    name="cosmos-extract",
    help="Monthly delegation, reward and fee report for Cosmos accounts",
    add_completion=False,
)

console = Console()


def configure_logging(debug: bool) -> None:
    level: int = logging.DEBUG if debug else logging.INFO
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(level))


def parse_time(raw: str) -> datetime:
    """Parse '2023-01-15' or '2023-01-15T10:00:00Z'; naive values are UTC."""
    try:
        text: str = raw.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        raise typer.BadParameter(
            f"Invalid time '{raw}'. Expected ISO-8601 (e.g., 2023-01-15 or 2023-01-15T00:00:00Z)"
        )


def _load(config: Optional[Path]) -> Settings:
    try:
        settings: Settings = load_settings(config)
        settings.gateway.require_endpoints()
    except (ConfigurationError, ValidationError) as e:
        console.print(f"[red]Configuration error:[/red] {escape(str(e))}")
        raise typer.Exit(code=2)
    return settings


@app.command()
def run(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="JSON config file"),
    start: Optional[str] = typer.Option(None, "--start", "-s", help="Range start (ISO-8601)"),
    end: Optional[str] = typer.Option(None, "--end", "-e", help="Range end (ISO-8601)"),
    account: Optional[list[str]] = typer.Option(
        None, "--account", "-a", help="Account to report on (repeatable or comma-separated)"
    ),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output CSV path"),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="Parallel report units"),
    rps: Optional[int] = typer.Option(None, "--rps", help="Gateway requests-per-second ceiling"),
    commission_failure: Optional[CommissionFailurePolicy] = typer.Option(
        None, "--commission-failure", help="On commission lookup failure: fail or zero"
    ),
    debug: bool = typer.Option(False, "--debug", help="Debug logging"),
):
    """Generate the monthly delegation / rewards / fees report."""
    from cosmos_extract.services.gateway import CosmosGateway
    from cosmos_extract.services.runner import ReportRunner

    settings = _load(config)
    configure_logging(debug or settings.debug)

    run_config = RunConfig.from_settings(settings)
    if start:
        run_config.start_time = parse_time(start)
    if end:
        run_config.end_time = parse_time(end)
    if account:
        run_config.accounts = [a.strip() for raw in account for a in raw.split(",") if a.strip()]
    if output:
        run_config.output_path = output
    if workers is not None:
        run_config.max_workers = workers
    if rps is not None:
        run_config.requests_per_second = rps
    if commission_failure is not None:
        run_config.commission_failure_policy = commission_failure

    try:
        run_config.validate()
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {escape(str(e))}")
        raise typer.Exit(code=2)

    gateway_settings = settings.gateway.model_copy(
        update={"requests_per_second": run_config.requests_per_second}
    )
    cancel_event = threading.Event()

    console.print(
        f"Reporting {len(run_config.accounts)} account(s) "
        f"from {run_config.start_time:%Y-%m-%d} to {run_config.end_time:%Y-%m-%d}..."
    )

    try:
        with CosmosGateway(
            gateway_settings,
            network=run_config.network,
            chain_id=run_config.chain_id,
            cancel_event=cancel_event,
        ) as gateway:
            runner = ReportRunner(gateway, run_config, cancel_event=cancel_event)

            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
            ) as progress:
                task = progress.add_task("Building report...", total=None)
                result = runner.run()
                progress.remove_task(task)
    except ReportRunError as e:
        console.print(f"[red]Report failed: {len(e.failures)} unit(s) failed[/red]")
        for failure in e.failures[:10]:
            console.print(f"  {failure.account} @ {failure.period_label}: {escape(str(failure.error))}")
        if len(e.failures) > 10:
            console.print(f"  ... and {len(e.failures) - 10} more")
        raise typer.Exit(code=1)
    except (GatewayError, ExportError) as e:
        console.print(f"[red]Report failed:[/red] {escape(str(e))}")
        raise typer.Exit(code=1)

    # Display results
    table = Table(title="Report Results")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Run ID", result.run_id)
    table.add_row("Periods", str(len(result.periods)))
    table.add_row("Accounts", str(result.account_count))
    table.add_row("Rows", str(result.row_count))
    table.add_row("Output", str(result.output_path))
    table.add_row("Elapsed", f"{result.elapsed_seconds:.1f}s")

    console.print(table)

    if result.warnings:
        console.print("\n[yellow]Warnings:[/yellow]")
        for warn in result.warnings:
            console.print(f"  {warn}")
    if result.degraded_validators:
        console.print("\n[yellow]Validators fee'd at zero commission:[/yellow]")
        for validator in result.degraded_validators:
            console.print(f"  {validator}")


@app.command()
def periods(
    start: str = typer.Option(..., "--start", "-s", help="Range start (ISO-8601)"),
    end: str = typer.Option(..., "--end", "-e", help="Range end (ISO-8601)"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="JSON config file"),
    debug: bool = typer.Option(False, "--debug", help="Debug logging"),
):
    """Show the calendar-month periods and end heights for a range."""
    from cosmos_extract.services.gateway import CosmosGateway
    from cosmos_extract.services.periods import PeriodBuilder

    start_time = parse_time(start)
    end_time = parse_time(end)
    if start_time > end_time:
        raise typer.BadParameter("--start must come before --end")

    settings = _load(config)
    configure_logging(debug or settings.debug)

    try:
        with CosmosGateway(
            settings.gateway,
            network=settings.report.network,
            chain_id=settings.report.chain_id,
        ) as gateway:
            builder = PeriodBuilder(gateway, settings.report.network, settings.report.chain_id)
            with console.status("Resolving period heights..."):
                result = builder.build(start_time, end_time)
    except GatewayError as e:
        console.print(f"[red]Could not resolve periods:[/red] {escape(str(e))}")
        raise typer.Exit(code=1)

    table = Table(title="Report Periods")
    table.add_column("Period", style="cyan")
    table.add_column("Start")
    table.add_column("Next Start")
    table.add_column("End Height", style="green", justify="right")

    for period in result:
        table.add_row(
            period.label,
            period.start_time.date().isoformat(),
            period.next_start_time.date().isoformat(),
            str(period.end_height),
        )

    console.print(table)


if __name__ == "__main__":
    app()
