"""Click-based CLI for panel-harga.

Thin wrapper around library modules. Every command delegates to the
pipeline, the scheduler or the store.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from datetime import date

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from panel_harga.pipeline import open_pipeline

console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run_async(coro):
    """Run an async coroutine from synchronous Click code."""
    return asyncio.run(coro)


def _load_config(ctx: click.Context):
    """Load config lazily, caching on first call."""
    if "config" not in ctx.obj:
        from panel_harga.core import load_config

        ctx.obj["config"] = load_config(config_path=ctx.obj.get("config_path"))
    return ctx.obj["config"]


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _parse_date(value: str | None) -> date | None:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise click.BadParameter(f"expected YYYY-MM-DD, got {value!r}") from e


def _print_run(run) -> None:
    colour = "green" if run.succeeded else "red"
    mark = "✓" if run.succeeded else "✗"
    console.print(
        f"[{colour}]{mark}[/{colour}] Run {run.run_id} {run.outcome}"
        + (f" via {run.method}" if run.method else "")
        + f": {run.item_count} stored, {run.skipped_count} skipped, "
        f"{run.failed_count} failed in {run.duration_seconds:.1f}s"
    )
    for note in run.notes:
        console.print(f"  [dim]{note}[/dim]")
    for error in run.errors:
        console.print(f"  [red]{error}[/red]")


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    envvar="PANEL_HARGA_CONFIG",
    default=None,
    help="Path to panel-harga.yml config file.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable verbose output.",
)
@click.version_option(package_name="panel-harga")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """Panel Harga: daily commodity price ingestion and national averages."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose
    ctx.obj["console"] = console
    _setup_logging(verbose)


# ---------------------------------------------------------------------------
# scrape / aggregate
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def scrape(ctx: click.Context) -> None:
    """Run one ingestion pass now, then aggregate national averages."""
    config = _load_config(ctx)

    async def _run():
        async with open_pipeline(config) as pipeline:
            return await pipeline.run_daily_ingestion()

    run = _run_async(_run())
    _print_run(run)
    if not run.succeeded:
        raise SystemExit(1)


@cli.command()
@click.option("--date", "price_date", type=str, default=None, help="Day to aggregate (YYYY-MM-DD). Default: today.")
@click.pass_context
def aggregate(ctx: click.Context, price_date: str | None) -> None:
    """Recompute national averages for one day."""
    config = _load_config(ctx)
    day = _parse_date(price_date)

    async def _run():
        async with open_pipeline(config) as pipeline:
            return await pipeline.aggregate(day)

    written = _run_async(_run())
    if not written:
        console.print("[yellow]No regional prices for that day; nothing aggregated.[/yellow]")
        return

    table = Table(title="National Averages")
    table.add_column("Commodity", style="bold")
    table.add_column("Average", justify="right")
    for commodity, average in sorted(written.items()):
        table.add_row(str(commodity), f"{average:,}")
    console.print(table)


# ---------------------------------------------------------------------------
# prices
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--region", "-r", type=str, default="NASIONAL", help="Province id or label.")
@click.option("--commodity", type=str, default=None, help="Limit to one commodity.")
@click.option("--date", "price_date", type=str, default=None, help="Price day (YYYY-MM-DD). Default: latest.")
@click.option("--days", type=click.IntRange(1, 365), default=None, help="Show the history window instead.")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
)
@click.pass_context
def prices(
    ctx: click.Context,
    region: str,
    commodity: str | None,
    price_date: str | None,
    days: int | None,
    output_format: str,
) -> None:
    """Show stored prices. Operators see every tier."""
    from panel_harga.core.models import Entitlement, PriceScope, Region, SubscriptionStatus

    config = _load_config(ctx)
    day = _parse_date(price_date)

    async def _run():
        async with open_pipeline(config) as pipeline:
            region_id = pipeline.normalizer.region(region)
            if region_id is None:
                raise click.BadParameter(f"unknown region {region!r}", param_hint="--region")
            commodities = None
            if commodity is not None:
                found = pipeline.normalizer.commodity(commodity)
                if found is None:
                    raise click.BadParameter(
                        f"unknown commodity {commodity!r}", param_hint="--commodity"
                    )
                commodities = (found,)

            if region_id == Region.NASIONAL and days is None:
                scope = PriceScope.national(commodities=commodities, price_date=day)
            else:
                scope = PriceScope.regional(
                    region_id, commodities=commodities, price_date=day, history_days=days
                )
            operator = Entitlement(account_id="cli", status=SubscriptionStatus.PREMIUM)
            return await pipeline.gateway.read_prices(scope, operator)

    view = _run_async(_run())

    if output_format == "json":
        click.echo(json.dumps(view.model_dump(mode="json"), indent=2, default=str))
        return

    if view.history:
        table = Table(title=f"Price history: {view.region}")
        table.add_column("Date")
        table.add_column("Commodity", style="bold")
        table.add_column("Price", justify="right")
        for entry in view.history:
            table.add_row(str(entry.price_date), str(entry.commodity), f"{entry.price:,}")
        console.print(table)
        for name, stats in sorted(view.statistics.items()):
            console.print(
                f"{name}: avg {stats.average:,} min {stats.min:,} "
                f"max {stats.max:,} volatility {stats.volatility:,}"
            )
        return

    if not view.records:
        console.print("[yellow]No prices stored for that selection.[/yellow]")
        return

    table = Table(title=f"Prices: {view.region} on {view.price_date}")
    table.add_column("Commodity", style="bold")
    table.add_column("Price", justify="right")
    table.add_column("Unit")
    table.add_column("Source")
    for record in view.records:
        table.add_row(str(record.commodity), f"{record.price:,}", record.unit, record.source_ref)
    console.print(table)


# ---------------------------------------------------------------------------
# runs
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--limit", "-n", type=click.IntRange(1, 500), default=10, help="Number of runs.")
@click.pass_context
def runs(ctx: click.Context, limit: int) -> None:
    """List recent ingestion runs."""
    config = _load_config(ctx)

    async def _run():
        async with open_pipeline(config) as pipeline:
            return await pipeline.store.list_ingestion_runs(limit=limit)

    recent = _run_async(_run())
    if not recent:
        console.print("[yellow]No ingestion runs recorded yet.[/yellow]")
        return

    table = Table(title="Ingestion Runs")
    table.add_column("Started")
    table.add_column("Run", style="dim")
    table.add_column("Outcome")
    table.add_column("Method")
    table.add_column("Stored", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Duration", justify="right")
    for run in recent:
        outcome = f"[green]{run.outcome}[/green]" if run.succeeded else f"[red]{run.outcome}[/red]"
        table.add_row(
            run.started_at.strftime("%Y-%m-%d %H:%M"),
            run.run_id[:8],
            outcome,
            str(run.method or "-"),
            str(run.item_count),
            str(run.skipped_count),
            str(run.failed_count),
            f"{run.duration_seconds:.1f}s",
        )
    console.print(table)


# ---------------------------------------------------------------------------
# maintenance
# ---------------------------------------------------------------------------


@cli.command("expire-subscriptions")
@click.pass_context
def expire_subscriptions(ctx: click.Context) -> None:
    """Expire lapsed premium subscriptions and downgrade their accounts."""
    config = _load_config(ctx)

    async def _run():
        async with open_pipeline(config) as pipeline:
            return await pipeline.expire_subscriptions()

    report = _run_async(_run())
    console.print(
        f"[green]✓[/green] Expired {len(report.expired_subscriptions)} subscription(s), "
        f"downgraded {len(report.downgraded_accounts)} account(s)"
    )


@cli.command()
@click.pass_context
def cleanup(ctx: click.Context) -> None:
    """Apply retention windows to prices, history and run logs."""
    config = _load_config(ctx)

    async def _run():
        async with open_pipeline(config) as pipeline:
            return await pipeline.cleanup()

    report = _run_async(_run())
    console.print(
        f"[green]✓[/green] Deactivated {report.deactivated_prices} price(s), "
        f"pruned {report.pruned_history} history row(s), "
        f"deleted {report.deleted_runs} run log(s)"
    )


# ---------------------------------------------------------------------------
# schedule / serve
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def schedule(ctx: click.Context) -> None:
    """Run the scheduler in the foreground until interrupted."""
    from panel_harga.scheduler import PriceScheduler

    config = _load_config(ctx)

    async def _run():
        async with open_pipeline(config) as pipeline:
            scheduler = PriceScheduler(pipeline)
            scheduler.setup_schedules()
            for job in scheduler.jobs:
                console.print(f"  {job}")
            try:
                await scheduler.run_forever()
            finally:
                await scheduler.stop()

    try:
        _run_async(_run())
    except KeyboardInterrupt:
        console.print("Scheduler interrupted")


@cli.command()
@click.option("--host", type=str, default=None, help="Bind address. Default: api.host.")
@click.option("--port", "-p", type=int, default=None, help="Port number. Default: api.port.")
@click.option("--reload", is_flag=True, default=False, help="Auto-reload on code changes.")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None, reload: bool) -> None:
    """Start the REST API server."""
    import uvicorn

    config = _load_config(ctx)
    host = host or config.api.host
    port = port or config.api.port
    if ctx.obj.get("config_path"):
        # The app factory reloads config itself
        os.environ["PANEL_HARGA_CONFIG"] = ctx.obj["config_path"]

    console.print(f"Starting panel-harga API on [bold]{host}:{port}[/bold]")
    console.print(f"API docs: http://{host}:{port}/docs")

    uvicorn.run(
        "panel_harga.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
