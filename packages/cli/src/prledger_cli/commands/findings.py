"""findings command: tracked findings for one review unit."""

from __future__ import annotations

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

console = Console()

_RESOLUTION_STYLE = {
    "pending": "yellow",
    "fixed": "green",
    "wontfix": "dim",
    "false-positive": "magenta",
}


@click.command("findings")
@click.option("--repo", required=True, help="Repository the review unit belongs to.")
@click.option("--unit", "unit_id", required=True, help="Review unit id (e.g. the PR number).")
@click.option("--history", "show_history", is_flag=True, help="Also show resolution transitions.")
@click.pass_context
def findings_cmd(ctx, repo: str, unit_id: str, show_history: bool):
    """Show the findings tracked for a review unit and their resolution."""
    from prledger_core.query import MetricsReader
    from prledger_store.memory import MemoryStore

    store = ctx.obj.get("store") if ctx.obj else None
    if store is None or isinstance(store, MemoryStore):
        raise click.UsageError(
            "No persistent store configured. Add 'store: sqlite' or 'store: gist' to .prledger.yml."
        )

    reader = MetricsReader(store)
    findings = reader.get_findings(repo, unit_id)
    if not findings:
        console.print("[yellow]No findings recorded for this unit.[/yellow]")
        return

    table = Table(title=f"Findings — {repo} {unit_id}", show_header=True, header_style="bold cyan")
    table.add_column("ID", style="bold")
    table.add_column("Severity")
    table.add_column("Category")
    table.add_column("Resolution")
    table.add_column("Description", max_width=50)
    table.add_column("Evidence")
    for f in findings:
        style = _RESOLUTION_STYLE.get(f.resolution, "white")
        table.add_row(
            escape(f.id),
            f.severity,
            f.category,
            f"[{style}]{f.resolution}[/{style}]",
            escape(f.description[:120]),
            escape(f.evidence_ref or ""),
        )
    console.print(table)

    if not show_history:
        return

    transitions = reader.get_history(repo, unit_id)
    history = Table(title="Resolution history", show_header=True)
    history.add_column("Observed at")
    history.add_column("Finding")
    history.add_column("From")
    history.add_column("To")
    history.add_column("Reason")
    for t in transitions:
        observed = t.observed_at[:19].replace("T", " ")
        history.add_row(observed, escape(t.finding_id), t.previous or "—", t.current, t.reason)
    console.print(history)
