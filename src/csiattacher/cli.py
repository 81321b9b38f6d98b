"""Command-line interface for the volume attachment controller."""

from __future__ import annotations

from pathlib import Path

import click
import uvicorn
from safir.click import display_help

from .constants import CONFIGURATION_PATH_ENV_VAR
from .dependencies.config import config_dependency

__all__ = ["help", "main", "run"]


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(message="%(version)s")
def main() -> None:
    """Command-line interface for csi-attacher."""


@main.command()
@click.argument("topic", default=None, required=False, nargs=1)
@click.argument("subtopic", default=None, required=False, nargs=1)
@click.pass_context
def help(ctx: click.Context, topic: str | None, subtopic: str | None) -> None:
    """Show help for any command."""
    display_help(main, ctx, topic, subtopic)


@main.command()
@click.option(
    "--config-path",
    "-c",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    envvar=CONFIGURATION_PATH_ENV_VAR,
    default=None,
    help="Path to the controller configuration",
)
@click.option("--host", default="0.0.0.0", help="Address to listen on")
@click.option("--port", default=8080, type=int, help="Port to listen on")
def run(config_path: Path | None, host: str, port: int) -> None:
    """Start the volume attachment controller."""
    if config_path:
        config_dependency.set_path(config_path)
    uvicorn.run(
        "csiattacher.main:create_app", factory=True, host=host, port=port
    )
