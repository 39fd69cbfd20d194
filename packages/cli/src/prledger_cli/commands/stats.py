"""stats command: weekly metrics buckets for a repository."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from prledger_core.models import CATEGORIES, RESOLUTIONS, SEVERITIES

console = Console()

_SEV_STYLE = {"blocking": "red", "important": "yellow", "suggestion": "blue"}


@click.command("stats")
@click.option("--repo", required=True, help="Repository the review units belong to.")
@click.option("--period", default=None, help="A single ISO week, e.g. 2026-W42.")
@click.option("--since", default=None, help="First ISO week to include.")
@click.option("--until", default=None, help="Last ISO week to include.")
@click.option("--completed-only", is_flag=True, help="Hide the current, still-open week.")
@click.pass_context
def stats_cmd(ctx, repo: str, period: str | None, since: str | None, until: str | None, completed_only: bool):
    """Show weekly review metrics for a repository.

    Reports adoption, finding volume by severity, false-positive and
    resolution rates per ISO week. With a single week selected, also breaks
    findings down by category and resolution.
    """
    from prledger_core.query import MetricsReader
    from prledger_core.utils.periods import is_valid_period
    from prledger_store.memory import MemoryStore

    store = ctx.obj.get("store") if ctx.obj else None
    if store is None or isinstance(store, MemoryStore):
        raise click.UsageError(
            "No persistent store configured. Add 'store: sqlite' or 'store: gist' to .prledger.yml."
        )

    for value in (period, since, until):
        if value is not None and not is_valid_period(value):
            raise click.BadParameter(f"{value!r} is not an ISO week (YYYY-Www).")
    if period is not None:
        since = until = period

    buckets = MetricsReader(store).list_buckets(repo, start=since, end=until, completed_only=completed_only)
    if not buckets:
        console.print("[yellow]No metrics found for this repository.[/yellow]")
        return

    table = Table(title=f"Review metrics — {repo}", show_header=True, header_style="bold cyan")
    table.add_column("Week", style="bold")
    table.add_column("Units", justify="right")
    table.add_column("Reviewed", justify="right")
    table.add_column("Adoption", justify="right")
    table.add_column("Findings", justify="right")
    table.add_column("Blocking", justify="right")
    table.add_column("FP rate", justify="right")
    table.add_column("Resolved", justify="right")
    for b in buckets:
        table.add_row(
            b.period,
            str(b.total_review_units),
            str(b.reviewed_units),
            f"{b.adoption_rate:.1f}%",
            str(b.total_findings),
            f"[red]{b.blocking_findings}[/red]" if b.blocking_findings else "0",
            f"{b.false_positive_rate:.1f}%",
            f"{b.resolution_rate:.1f}%",
        )
    console.print(table)

    if len(buckets) != 1:
        return

    bucket = buckets[0]
    total = bucket.total_findings
    console.print(f"  Avg findings per reviewed unit: {bucket.average_findings_per_reviewed_unit:.2f}")
    if bucket.timed_resolutions:
        console.print(f"  Avg resolution time: {bucket.average_resolution_time:.1f} min")
    if not total:
        return

    sev_table = Table(title="Severity Breakdown", show_header=True)
    sev_table.add_column("Severity", style="bold")
    sev_table.add_column("Count", justify="right")
    sev_table.add_column("% of total", justify="right")
    for sev in SEVERITIES:
        count = bucket.severity_counts.get(sev, 0)
        style = _SEV_STYLE.get(sev, "white")
        sev_table.add_row(f"[{style}]{sev}[/{style}]", str(count), f"{count / total * 100:.1f}%")
    console.print(sev_table)

    cat_table = Table(title="Category Breakdown", show_header=True)
    cat_table.add_column("Category")
    cat_table.add_column("Count", justify="right")
    for cat in sorted(CATEGORIES, key=lambda c: bucket.category_counts.get(c, 0), reverse=True):
        count = bucket.category_counts.get(cat, 0)
        if count:
            cat_table.add_row(cat, str(count))
    console.print(cat_table)

    res_table = Table(title="Resolution", show_header=True)
    res_table.add_column("Resolution")
    res_table.add_column("Count", justify="right")
    for res in RESOLUTIONS:
        res_table.add_row(res, str(bucket.resolution_counts.get(res, 0)))
    console.print(res_table)
