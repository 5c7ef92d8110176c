"""isync worker command - consume the reindex queue."""

import click
from rich.console import Console

from indexsync.cli.utils import cli_errors, get_runtime


@click.command()
@click.option("-c", "--concurrency", type=int, default=None, help="Consumer loops (default: config)")
@click.option("--max-jobs", type=int, default=None, help="Exit after this many jobs per loop")
@click.option("--drain", is_flag=True, help="Exit once the queue is empty")
@click.pass_context
def worker_command(
    ctx: click.Context, concurrency: int | None, max_jobs: int | None, drain: bool
) -> None:
    """Process queued reindex and rebuild jobs until interrupted."""
    runtime = get_runtime(ctx)
    worker = runtime.worker
    loops = concurrency or runtime.config.worker.concurrency
    console = Console(stderr=True)

    with cli_errors():
        if loops <= 1:
            try:
                worker.run(max_jobs=max_jobs, drain=drain)
            except KeyboardInterrupt:
                console.print("[dim]Interrupted[/dim]")
        else:
            worker.start(loops, max_jobs=max_jobs, drain=drain)
            try:
                worker.wait()
            except KeyboardInterrupt:
                console.print("[dim]Interrupted, finishing current jobs...[/dim]")
            finally:
                worker.stop()

    status = worker.status
    click.echo(f"Processed: {status.processed} job(s), {status.failed} failed")
    if status.last_error:
        click.echo(f"Last error: {status.last_error}")
