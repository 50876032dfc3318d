from __future__ import annotations

import concurrent.futures
import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from tracebeam.client import TraceBeamCore
from tracebeam.config import ClientConfig
from tracebeam.constants import (
    CONFIG_FILE_USER,
    EXIT_CODE_DELIVERY_FAILED,
    EXIT_CODE_OK,
)
from tracebeam.errors import TraceBeamError
from tracebeam.meta import get_version
from tracebeam.storage import JsonFileStore

LOG = logging.getLogger(__name__)

console = Console()
app = typer.Typer(rich_markup_mode="rich", name="tracebeam", no_args_is_help=True)

CLI_MAIN_HELP = (
    "Inspect the tracebeam client configuration and replay persisted events.\n\n"
    "Example: tracebeam replay --store ~/.tracebeam/queue.json"
)


def configure_logger(debug: bool) -> None:
    level = logging.CRITICAL

    if debug:
        level = logging.DEBUG

    logging.basicConfig(format="%(asctime)s %(name)s => %(message)s", level=level)


def version_callback(value: bool) -> None:
    if value:
        console.print(f"tracebeam, version {get_version()}")
        raise typer.Exit()


@app.callback(help=CLI_MAIN_HELP)
def main(
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging."),
    version: Optional[bool] = typer.Option(
        None, "--version", callback=version_callback, is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    configure_logger(debug)


def _resolve(config_path: Optional[Path], **overrides) -> ClientConfig:
    try:
        return ClientConfig.resolve(config_path=config_path, **overrides)
    except TraceBeamError as e:
        console.print(f"[red]{e.message}[/red]")
        sys.exit(e.get_exit_code())


@app.command("config")
def show_config(
    config_path: Optional[Path] = typer.Option(
        None, "--config", help=f"Config file to read, defaults to {CONFIG_FILE_USER}",
    ),
) -> None:
    """
    Print the resolved client configuration with the secret key masked.
    """
    config = _resolve(config_path)

    table = Table(title="tracebeam configuration")
    table.add_column("Setting")
    table.add_column("Value")
    for name, value in config.masked().items():
        table.add_row(name, "" if value is None else str(value))

    console.print(table)


@app.command("replay")
def replay(
    store_path: Path = typer.Option(
        ..., "--store", help="JSON file store holding the persisted queue.",
    ),
    public_key: Optional[str] = typer.Option(None, "--public-key"),
    secret_key: Optional[str] = typer.Option(None, "--secret-key"),
    base_url: Optional[str] = typer.Option(None, "--base-url"),
    config_path: Optional[Path] = typer.Option(None, "--config"),
) -> None:
    """
    Deliver the events left in a persisted queue, then report the result.
    """
    config = _resolve(
        config_path, public_key=public_key, secret_key=secret_key, base_url=base_url,
    )

    client = TraceBeamCore(config, store=JsonFileStore(store_path))
    envelopes = list(client.queue.restored)

    if not envelopes:
        client.shutdown()
        console.print("No persisted events to replay.")
        raise typer.Exit(EXIT_CODE_OK)

    with console.status(f"Replaying {len(envelopes)} events..."):
        client.shutdown(timeout=None)

    failed = 0
    for envelope in envelopes:
        try:
            envelope.future.result(timeout=0)
        except concurrent.futures.TimeoutError:
            failed += 1
        except Exception as e:
            failed += 1
            LOG.debug("Event %s failed: %s", envelope.id, e)

    delivered = len(envelopes) - failed
    console.print(f"Delivered [green]{delivered}[/green] events, [red]{failed}[/red] failed.")

    if failed:
        raise typer.Exit(EXIT_CODE_DELIVERY_FAILED)
