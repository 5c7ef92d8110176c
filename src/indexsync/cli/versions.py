"""isync versions / optimize commands - index version maintenance."""

import json

import click
import questionary
from rich.console import Console
from rich.table import Table

from indexsync.cli.utils import cli_errors, get_runtime
from indexsync.models import VersionStatus

_STATUS_STYLE = {
    VersionStatus.CURRENT: "green",
    VersionStatus.BUILDING: "yellow",
    VersionStatus.STALE: "dim",
}


@click.group()
def versions_group() -> None:
    """Inspect and clean up physical index versions."""


@versions_group.command("list")
@click.argument("entity")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def list_command(ctx: click.Context, entity: str, as_json: bool) -> None:
    """List versions of ENTITY's index, newest first."""
    runtime = get_runtime(ctx)
    with cli_errors():
        versions = runtime.versions.list_versions(entity)

    if as_json:
        click.echo(
            json.dumps(
                [
                    {
                        "name": v.name,
                        "status": v.status.value,
                        "created_at": v.created_at.isoformat(),
                    }
                    for v in versions
                ]
            )
        )
        return

    if not versions:
        click.echo(f"No index versions for {entity}")
        return

    table = Table(title=f"{entity} index versions")
    table.add_column("Version")
    table.add_column("Status")
    table.add_column("Created (UTC)")
    for v in versions:
        style = _STATUS_STYLE[v.status]
        table.add_row(
            v.name,
            f"[{style}]{v.status.value}[/{style}]",
            v.created_at.strftime("%Y-%m-%d %H:%M:%S"),
        )
    Console().print(table)


@versions_group.command("prune")
@click.argument("entity")
@click.pass_context
def prune_command(ctx: click.Context, entity: str) -> None:
    """Delete every version of ENTITY except the current one."""
    runtime = get_runtime(ctx)
    with cli_errors():
        pruned = runtime.versions.prune_versions(entity)
    for name in pruned:
        click.echo(f"Deleted {name}")
    click.echo(f"Pruned {len(pruned)} version(s)")


@versions_group.command("drop")
@click.argument("entity")
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation")
@click.pass_context
def drop_command(ctx: click.Context, entity: str, yes: bool) -> None:
    """Delete ENTITY's index entirely, current version included."""
    runtime = get_runtime(ctx)
    with cli_errors():
        runtime.registry.get(entity)

    if not yes:
        answer = questionary.select(
            f"Drop every index version of {entity}? Searches will fail until a rebuild.",
            choices=[
                questionary.Choice("No, keep the index", value=False),
                questionary.Choice("Yes, drop it", value=True),
            ],
        ).ask()
        if not answer:
            click.echo("Cancelled")
            return

    with cli_errors():
        dropped = runtime.versions.drop_index(entity)
    click.echo(f"Dropped {len(dropped)} version(s) of {entity}")


@click.command()
@click.argument("entity")
@click.pass_context
def optimize_command(ctx: click.Context, entity: str) -> None:
    """Force-merge ENTITY's current index version."""
    runtime = get_runtime(ctx)
    with cli_errors():
        runtime.versions.optimize(entity)
    click.echo(f"Optimized {entity}")
