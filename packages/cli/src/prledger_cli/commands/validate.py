"""validate command: check records against their schema version."""

from __future__ import annotations

import json

import click
from rich.console import Console
from rich.markup import escape

console = Console()


@click.command("validate")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--type",
    "record_type",
    type=click.Choice(["finding", "bucket", "unit"]),
    default=None,
    help="Validate every record as this type instead of reading recordType.",
)
def validate_cmd(path: str, record_type: str | None):
    """Validate finding/bucket records in PATH (JSON object, array, or JSON lines).

    Useful before importing records produced by another tool or an older
    prledger version: each record is checked against the rules for its
    schemaVersion.
    """
    from prledger_core.schema import validate

    with open(path, encoding="utf-8") as f:
        text = f.read().strip()
    try:
        data = json.loads(text) if text else []
    except json.JSONDecodeError:
        try:
            data = [json.loads(line) for line in text.splitlines() if line.strip()]
        except json.JSONDecodeError as e:
            raise click.UsageError(f"{path} is neither JSON nor JSON lines: {e}")
    records = data if isinstance(data, list) else [data]

    invalid = 0
    for index, record in enumerate(records, 1):
        result = validate(record, record_type=record_type)
        if result.valid:
            continue
        invalid += 1
        for error in result.errors:
            console.print(f"[red]record {index}[/red] {escape(str(error))}")

    if invalid:
        raise click.ClickException(f"{invalid} of {len(records)} record(s) invalid.")
    console.print(f"[green]{len(records)} record(s) valid.[/green]")
