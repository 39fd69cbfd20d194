"""ingest command: parse review comments and fold them into the store."""

from __future__ import annotations

import json
import signal
import threading

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from prledger_core.coordinator import IngestionCoordinator
from prledger_core.models import ReviewUnit

console = Console()

_STATUS_STYLE = {
    "accepted": "green",
    "unchanged": "dim",
    "stale": "yellow",
    "failed": "red",
    "cancelled": "yellow",
}


def _load_units(path: str) -> list[ReviewUnit]:
    """Read review units from a JSON array, a single JSON object, or JSON lines."""
    with open(path, encoding="utf-8") as f:
        text = f.read()
    stripped = text.strip()
    if not stripped:
        return []
    try:
        data = json.loads(stripped)
    except json.JSONDecodeError:
        try:
            data = [json.loads(line) for line in stripped.splitlines() if line.strip()]
        except json.JSONDecodeError as e:
            raise click.UsageError(f"{path} is neither JSON nor JSON lines: {e}")
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list) or not all(isinstance(d, dict) for d in data):
        raise click.UsageError(f"{path} must contain review unit objects.")
    return [ReviewUnit.from_dict(d) for d in data]


@click.command("ingest")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--full-review",
    "fully_reviewed",
    is_flag=True,
    help="Each comment covers its whole change: findings it no longer mentions count as fixed.",
)
@click.option("--workers", type=int, default=None, help="Parallel workers. Overrides config file.")
@click.option("--show-rejected/--hide-rejected", default=True, show_default=True, help="List rejected fragments.")
@click.pass_context
def ingest_cmd(ctx, path: str, fully_reviewed: bool, workers: int | None, show_rejected: bool):
    """Ingest review units from PATH (JSON array or JSON lines).

    \b
    Each unit is an object with:
      unitId, repository, reviewTimestamp, commentBody, reviewed (optional)
    Re-ingesting a unit corrects its earlier contribution; re-ingesting an
    identical payload is a no-op.
    """
    store = ctx.obj.get("store") if ctx.obj else None
    config = ctx.obj.get("config", {}) if ctx.obj else {}
    if store is None:
        raise click.UsageError("No store available.")

    units = _load_units(path)
    if not units:
        console.print("[yellow]No review units found.[/yellow]")
        return

    coordinator = IngestionCoordinator(
        store,
        max_retries=config.get("max_retries"),
        retry_base_delay=config.get("retry_base_delay"),
    )

    # Ctrl-C stops units that have not started; units in flight finish atomically.
    cancel = threading.Event()
    previous_handler = signal.signal(signal.SIGINT, lambda *_: cancel.set())
    try:
        results = coordinator.ingest_batch(
            units,
            workers=workers or int(config.get("workers", 1)),
            cancel=cancel,
            fully_reviewed=fully_reviewed,
        )
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    table = Table(title=f"Ingested {len(results)} unit(s)", show_header=True, header_style="bold cyan")
    table.add_column("Repository")
    table.add_column("Unit", style="bold")
    table.add_column("Status", width=10)
    table.add_column("Accepted", justify="right")
    table.add_column("Rejected", justify="right")
    table.add_column("Bucket")
    for r in results:
        style = _STATUS_STYLE.get(r.status, "white")
        table.add_row(
            escape(r.repository),
            escape(r.unit_id),
            f"[{style}]{r.status}[/{style}]",
            str(r.accepted),
            str(len(r.rejected)),
            (r.bucket_key or "").rsplit("/", 1)[-1],
        )
    console.print(table)

    if show_rejected:
        for r in results:
            for item in r.rejected:
                console.print(f"  [yellow]rejected[/yellow] {escape(r.unit_id)}: {escape(str(item))}")

    failed = [r for r in results if r.status == "failed"]
    for r in failed:
        hint = " (retryable)" if r.retryable else ""
        console.print(f"  [red]failed[/red] {escape(r.repository)}/{escape(r.unit_id)}: {escape(r.error or '')}{hint}")
    if failed:
        raise click.ClickException(f"{len(failed)} unit(s) failed to ingest.")
