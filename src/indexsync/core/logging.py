"""Structured logging for sync processes.

Every queued job is logged under a job context: a short correlation id plus
the entity type, job kind and delivery attempt it concerns. The context lives
in structlog's context variables, so records emitted anywhere below the
worker (search client, queue, store) carry it without passing loggers down.

Rendering goes through the stdlib ``logging`` handlers, one per configured
output, each with its own level and format.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import structlog
from structlog.contextvars import (
    bind_contextvars,
    bound_contextvars,
    get_contextvars,
    unbind_contextvars,
)

if TYPE_CHECKING:
    from indexsync.config.models import LoggingConfig, LogOutputConfig

# Libraries that log every request at INFO
_CHATTY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine")


def _new_correlation_id() -> str:
    return uuid4().hex[:12]


def get_correlation_id() -> str | None:
    return get_contextvars().get("correlation_id")


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Tag subsequent records in this context, e.g. one CLI invocation."""
    cid = correlation_id or _new_correlation_id()
    bind_contextvars(correlation_id=cid)
    return cid


def clear_correlation_id() -> None:
    unbind_contextvars("correlation_id")


@contextmanager
def job_context(entity_type: str, job_kind: str, attempt: int | None = None) -> Iterator[str]:
    """Bind a fresh correlation id and the job's identity for its duration.

    Yields the correlation id. Keys bound before entry are restored on exit.
    """
    cid = _new_correlation_id()
    fields: dict[str, Any] = {
        "correlation_id": cid,
        "entity_type": entity_type,
        "job_kind": job_kind,
    }
    if attempt is not None:
        fields["attempt"] = attempt
    with bound_contextvars(**fields):
        yield cid


def _level(name: str | None, default: int = logging.INFO) -> int:
    if not name:
        return default
    value = logging.getLevelName(name.upper())
    return value if isinstance(value, int) else default


def _renderer(output: LogOutputConfig) -> structlog.types.Processor:
    if output.format == "json":
        return structlog.processors.JSONRenderer()
    stream = sys.stdout if output.destination == "stdout" else sys.stderr
    return structlog.dev.ConsoleRenderer(
        colors=output.destination in ("stderr", "stdout") and stream.isatty(),
        pad_event_to=0,
        pad_level=False,
    )


def _handler(output: LogOutputConfig) -> logging.Handler:
    if output.destination == "stderr":
        return logging.StreamHandler(sys.stderr)
    if output.destination == "stdout":
        return logging.StreamHandler(sys.stdout)
    path = Path(output.destination)
    path.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(path, mode="a")


def configure_logging(
    *,
    config: LoggingConfig | None = None,
    json_format: bool = False,
    level: str = "INFO",
) -> None:
    """Route structlog through stdlib handlers, one per configured output.

    Without ``config`` a single stderr output is set up from ``json_format``
    and ``level``. A given ``config`` wins over both.
    """
    from indexsync.config.models import LoggingConfig, LogOutputConfig

    if config is None:
        config = LoggingConfig(
            level=level.upper(),  # type: ignore[arg-type]
            outputs=[LogOutputConfig(format="json" if json_format else "console")],
        )
    root_level = _level(config.level)

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", key="timestamp"),
    ]
    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(root_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Reconfiguration must take effect on loggers created at import time
        cache_logger_on_first_use=False,
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(root_level)
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    for output in config.outputs:
        handler = _handler(output)
        handler.setLevel(_level(output.level, root_level))
        handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=_renderer(output), foreign_pre_chain=pre_chain
            )
        )
        root.addHandler(handler)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(logger=name)
    return logger  # type: ignore[no-any-return]
