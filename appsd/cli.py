"""appsd command line."""

from __future__ import annotations

import logging
import signal
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.table import Table

from appsd import __version__
from appsd.agent import Appsd
from appsd.config import AppsdConfig, load_config
from appsd.message import METADATA_MODULE, RESOURCE_NODE, RESOURCE_SEP, LocalChannel, Message

logger = logging.getLogger(__name__)

console = Console()


def directory_responder(root: Path):
    """Answer metadata queries from ``<root>/<type>/<name>.json`` files.

    ``name`` is the application name or domain carried by the query resource.
    """

    def respond(message: Message) -> List[str]:
        segments = message.resource.split(RESOURCE_SEP)
        if len(segments) > 2 and segments[0] == RESOURCE_NODE:
            segments = segments[2:]
        if len(segments) < 2:
            return []
        resource_type, names = segments[1], segments[2:]

        objects = []
        for name in names:
            path = root / resource_type / f"{name}.json"
            if path.is_file():
                objects.append(path.read_text(encoding="utf-8"))
        logger.debug(f"metadata query {message.resource}: {len(objects)} object(s)")
        return objects

    return respond


def _load(config_path: Optional[str]) -> AppsdConfig:
    try:
        return load_config(Path(config_path) if config_path else None)
    except (FileNotFoundError, ValueError) as e:
        raise click.ClickException(str(e)) from e


@click.group(name="appsd")
@click.version_option(__version__, prog_name="appsd")
def cli() -> None:
    """Native application lifecycle agent."""


@cli.command(name="run")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None, help="YAML config file.")
@click.option(
    "--metadata-dir",
    type=click.Path(file_okay=False, exists=True),
    default=None,
    help="Serve metadata queries from <dir>/<type>/<name>.json.",
)
@click.option("--no-http", is_flag=True, help="Do not start the config query server.")
@click.option("--verbose", is_flag=True, help="Enable verbose logs.")
def run_cmd(config_path: Optional[str], metadata_dir: Optional[str], no_http: bool, verbose: bool) -> None:
    """Start the agent and block until SIGINT/SIGTERM."""
    cfg = _load(config_path)
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    channel = LocalChannel()
    if metadata_dir:
        channel.register_responder(METADATA_MODULE, directory_responder(Path(metadata_dir)))

    agent = Appsd(cfg, channel, serve_http=not no_http)
    try:
        if not agent.start():
            return
    except Exception as e:
        logger.error(f"appsd failed to start: {e}")
        channel.close()
        raise click.ClickException(str(e)) from e

    def _shutdown(signum, frame) -> None:
        logger.info(f"Received signal {signum}, shutting down")
        agent.request_stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    try:
        while not agent.wait(1.0):
            pass
    finally:
        agent.stop()
        channel.close()


@cli.command(name="show-config")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None, help="YAML config file.")
def show_config_cmd(config_path: Optional[str]) -> None:
    """Print the effective configuration."""
    cfg = _load(config_path)

    table = Table(title="appsd configuration")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for key, value in cfg.to_dict().items():
        table.add_row(key, "" if value is None else str(value))
    console.print(table)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
