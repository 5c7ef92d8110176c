"""isync reindex / rebuild commands."""

import click
from rich.console import Console

from indexsync.cli.utils import cli_errors, get_runtime
from indexsync.models import ReindexJob


@click.command()
@click.argument("entity")
@click.argument("ids", nargs=-1, required=True)
@click.option("--now", is_flag=True, help="Apply in this process instead of enqueueing")
@click.pass_context
def reindex_command(ctx: click.Context, entity: str, ids: tuple[str, ...], now: bool) -> None:
    """Reindex records of ENTITY by id.

    Ids missing from the primary store are removed from the index.
    """
    runtime = get_runtime(ctx)
    with cli_errors():
        runtime.registry.get(entity)
        if now:
            stats = runtime.worker.reindex_ids(entity, list(ids))
            click.echo(
                f"{entity}: {stats.upserted} indexed, {stats.deleted} deleted"
                + (f" ({stats.skipped} skipped)" if stats.skipped else "")
            )
            return
        runtime.queue.enqueue(ReindexJob.reindex(entity, list(ids)))
    click.echo(f"Enqueued reindex of {len(ids)} {entity} id(s)")


@click.command()
@click.argument("entity")
@click.option("--enqueue", is_flag=True, help="Queue the rebuild for a worker")
@click.pass_context
def rebuild_command(ctx: click.Context, entity: str, enqueue: bool) -> None:
    """Rebuild the index of ENTITY into a new version, then swap it in."""
    runtime = get_runtime(ctx)
    with cli_errors():
        runtime.registry.get(entity)
        if enqueue:
            runtime.queue.enqueue(ReindexJob.rebuild(entity))
            click.echo(f"Enqueued rebuild of {entity}")
            return

        console = Console(stderr=True)
        with console.status(f"[cyan]Rebuilding {entity}...[/cyan]", spinner="dots"):
            stats = runtime.worker.rebuild(entity)

    console.print(
        f"  [green]✓[/green] {stats.version}: {stats.indexed} document(s) "
        f"in {stats.duration_seconds:.2f}s"
    )
    if stats.pruned:
        console.print(f"  [dim]Pruned {len(stats.pruned)} old version(s)[/dim]")
    click.echo(stats.version)
