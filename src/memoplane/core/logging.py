"""structlog set-up for memoplane.

Engine events (``cache_hit``, ``frame_not_cached``, ``cache_invalidated``...)
are emitted through structlog and rendered by stdlib handlers, one per
configured output. Events logged while a program runs under ``memoplane run``
carry that run's ``run_id``, bound as a structlog context variable.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from uuid import uuid4

import structlog

from memoplane.config.models import LoggingConfig, LogOutputConfig

# only warnings from libraries the cache layer drives
_QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool")

_PRE_CHAIN: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
]


def start_run(run_id: str | None = None) -> str:
    """Bind a run id to every event logged from here on."""
    rid = run_id or uuid4().hex[:12]
    structlog.contextvars.bind_contextvars(run_id=rid)
    return rid


def end_run() -> None:
    structlog.contextvars.unbind_contextvars("run_id")


def current_run_id() -> str | None:
    return structlog.contextvars.get_contextvars().get("run_id")


@contextmanager
def run_scope(run_id: str | None = None) -> Iterator[str]:
    rid = start_run(run_id)
    try:
        yield rid
    finally:
        end_run()


def _handler_for(output: LogOutputConfig) -> logging.Handler:
    if output.destination == "stderr":
        return logging.StreamHandler(sys.stderr)
    if output.destination == "stdout":
        return logging.StreamHandler(sys.stdout)
    path = Path(output.destination)
    path.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(path, mode="a", encoding="utf-8")


def _renderer_for(output: LogOutputConfig) -> structlog.types.Processor:
    if output.format == "json":
        return structlog.processors.JSONRenderer()
    stream = sys.stdout if output.destination == "stdout" else sys.stderr
    colors = output.destination in ("stderr", "stdout") and stream.isatty()
    return structlog.dev.ConsoleRenderer(colors=colors, pad_event_to=0)


def configure_logging(config: LoggingConfig | None = None) -> None:
    """Route structlog events to the outputs of ``config``.

    Safe to call again: handlers from an earlier call are replaced.
    """
    config = config or LoggingConfig()
    root_level = logging.getLevelName(config.level)

    structlog.configure(
        processors=[*_PRE_CHAIN, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(root_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(root_level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    for output in config.outputs:
        handler = _handler_for(output)
        handler.setLevel(logging.getLevelName(output.level or config.level))
        handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=_renderer_for(output),
                foreign_pre_chain=_PRE_CHAIN,
            )
        )
        root.addHandler(handler)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    logger = structlog.get_logger()
    return logger.bind(logger=name) if name else logger  # type: ignore[no-any-return]
