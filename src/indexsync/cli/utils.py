"""CLI utilities."""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

import click

from indexsync.config import load_config
from indexsync.core.errors import IndexSyncError
from indexsync.core.logging import configure_logging

if TYPE_CHECKING:
    from indexsync.runtime import Runtime


def get_runtime(ctx: click.Context) -> Runtime:
    """Runtime for this invocation, built from config on first use.

    A runtime already present in ``ctx.obj`` (embedding hosts, tests) is
    used as is and left open.
    """
    obj = ctx.ensure_object(dict)
    runtime: Runtime | None = obj.get("runtime")
    if runtime is not None:
        return runtime

    from indexsync.runtime import build_runtime

    config_path: Path | None = obj.get("config_path")
    with cli_errors():
        config = load_config(config_path)
        if not obj.get("verbose"):
            configure_logging(config=config.logging)
        runtime = build_runtime(config)
    obj["runtime"] = runtime
    ctx.call_on_close(runtime.close)
    return runtime


@contextmanager
def cli_errors() -> Generator[None, None, None]:
    """Render indexsync errors as click errors (exit code 1)."""
    try:
        yield
    except IndexSyncError as e:
        raise click.ClickException(str(e)) from e
