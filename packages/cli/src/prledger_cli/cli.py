"""CLI entry point for prledger.

Commands:
  ingest    parse review comments into findings and fold them into metrics
  stats     weekly metrics buckets for a repository
  findings  tracked findings (and resolution history) for one review unit
  validate  check stored-format records against their schema version
  alerts    evaluate alert thresholds against a bucket
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from prledger_cli.commands.alerts import alerts_cmd
from prledger_cli.commands.findings import findings_cmd
from prledger_cli.commands.ingest import ingest_cmd
from prledger_cli.commands.stats import stats_cmd
from prledger_cli.commands.validate import validate_cmd

console = Console()


def _build_store(config: dict):
    """Instantiate the configured store from .prledger.yml settings.

    Store selection hierarchy:
      store: gist   → GistStore   (requires gist_id and a GitHub token)
      store: sqlite → SQLiteStore (uses store_path, default .prledger.db)
      (default)     → MemoryStore (nothing persists between runs)

    This factory lives in cli.py so neither prledger_core nor prledger_store
    know about the CLI config format.
    """
    from prledger_store.memory import MemoryStore

    store_type = config.get("store", "memory")
    timeout = float(config.get("store_timeout", 10.0))

    if store_type == "gist":
        from prledger_store.gist import GistStore
        from prledger_cli.auth import resolve_gist_token

        gist_id = config.get("gist_id")
        token = resolve_gist_token(config)
        if not gist_id or not token:
            console.print(
                "[yellow]GistStore requires gist_id and a GitHub token. Falling back to memory store.[/yellow]"
            )
            return MemoryStore()
        return GistStore(gist_id=gist_id, token=token, timeout=timeout)

    if store_type == "sqlite":
        from prledger_store.sqlite import SQLiteStore

        db_path = config.get("store_path", ".prledger.db")
        return SQLiteStore(db_path=db_path, timeout=timeout)

    if store_type != "memory":
        raise click.UsageError(f"Unknown store {store_type!r}. Choose 'memory', 'sqlite' or 'gist'.")
    return MemoryStore()


@click.group()
@click.version_option(
    version=importlib.metadata.version("prledger"),
    prog_name="prledger",
)
@click.option(
    "--config",
    "config_path",
    default=".prledger.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="PRLEDGER_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Log pipeline details (parser warnings, retries).")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Track AI code-review findings and their resolution over time."""
    from prledger_core.config import load_config

    ctx.ensure_object(dict)

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        )

    try:
        config = load_config(config_path)
    except ValueError as e:
        raise click.UsageError(str(e))

    store = _build_store(config)
    ctx.obj["store"] = store
    ctx.obj["config"] = config
    ctx.call_on_close(store.close)


main.add_command(ingest_cmd)
main.add_command(stats_cmd)
main.add_command(findings_cmd)
main.add_command(validate_cmd)
main.add_command(alerts_cmd)
