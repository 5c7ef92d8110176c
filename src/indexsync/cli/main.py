"""indexsync CLI - isync command."""

from pathlib import Path

import click

from indexsync import __version__
from indexsync.cli.reindex import rebuild_command, reindex_command
from indexsync.cli.versions import optimize_command, versions_group
from indexsync.cli.worker import worker_command
from indexsync.core.logging import configure_logging


@click.group()
@click.version_option(version=__version__, prog_name="isync")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Config file (default: ./indexsync.yaml)",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_path: Path | None) -> None:
    """indexsync - keep search indices in sync with your primary store."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config_path"] = config_path
    configure_logging(level="DEBUG" if verbose else "INFO")


cli.add_command(worker_command, name="worker")
cli.add_command(reindex_command, name="reindex")
cli.add_command(rebuild_command, name="rebuild")
cli.add_command(versions_group, name="versions")
cli.add_command(optimize_command, name="optimize")


if __name__ == "__main__":
    cli()
