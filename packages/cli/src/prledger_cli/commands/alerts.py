"""alerts command: evaluate configured thresholds against a week's metrics."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

console = Console()


@click.command("alerts")
@click.option("--repo", required=True, help="Repository to check.")
@click.option("--period", default=None, help="ISO week to check. Defaults to the latest completed week.")
@click.pass_context
def alerts_cmd(ctx, repo: str, period: str | None):
    """Check a week's metrics against the `alerts` thresholds in .prledger.yml.

    Exits with status 1 when any alert fires, so the command can gate a CI
    job or a scheduled workflow.
    """
    from prledger_core.alerts import evaluate_alerts
    from prledger_core.query import MetricsReader
    from prledger_store.memory import MemoryStore

    store = ctx.obj.get("store") if ctx.obj else None
    config = ctx.obj.get("config", {}) if ctx.obj else {}
    if store is None or isinstance(store, MemoryStore):
        raise click.UsageError(
            "No persistent store configured. Add 'store: sqlite' or 'store: gist' to .prledger.yml."
        )

    thresholds = config.get("alerts") or {}
    if not thresholds:
        raise click.UsageError("No alert thresholds configured. Add an 'alerts' section to .prledger.yml.")

    reader = MetricsReader(store)
    if period is not None:
        bucket = reader.get_bucket(repo, period)
    else:
        completed = reader.list_buckets(repo, completed_only=True)
        bucket = completed[-1] if completed else None
    if bucket is None:
        console.print("[yellow]No metrics found to check.[/yellow]")
        return

    try:
        alerts = evaluate_alerts(bucket, thresholds)
    except ValueError as e:
        raise click.UsageError(str(e))

    if not alerts:
        console.print(f"[green]{bucket.period}: all thresholds met.[/green]")
        return

    table = Table(title=f"Alerts — {repo} {bucket.period}", show_header=True, header_style="bold red")
    table.add_column("Alert", style="bold")
    table.add_column("Value", justify="right")
    table.add_column("Threshold", justify="right")
    table.add_column("Message")
    for alert in alerts:
        table.add_row(alert.name, f"{alert.value:g}", f"{alert.threshold:g}", alert.message)
    console.print(table)
    ctx.exit(1)
