"""Structured logging for the Reelshelf daemon.

Two streams are written under the configured log directory:

- ``daemon.log``: every event, rendered for humans
- ``session.log``: one JSON object per line, only events from the
  ``reelshelf.session`` logger tree (edit begin/stage/save/cancel,
  playback attach/detach, coordinator transitions)

While the coordinator is serving a request it binds ``request`` (the
operation name) and ``mode`` (the session mode the request started in)
as context variables, so every event emitted on behalf of that request,
including the store's commit and the surface's attach, carries both keys.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

SESSION_LOGGER = "reelshelf.session"
DAEMON_LOG = "daemon.log"
SESSION_LOG = "session.log"

_MAX_BYTES = 10 * 1024 * 1024
_BACKUP_COUNT = 5

# Third-party loggers kept at WARNING or above whatever the daemon level is.
_QUIETED = ("uvicorn", "uvicorn.access", "uvicorn.error", "aiosqlite", "asyncio")

_shared_processors: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.ExtraAdder(),
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.UnicodeDecoder(),
]


def _file_handler(
    path: Path,
    formatter: logging.Formatter,
    only: str | None = None,
) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT, encoding="utf-8")
    handler.setFormatter(formatter)
    if only is not None:
        handler.addFilter(logging.Filter(only))
    return handler


def _install_excepthook() -> None:
    def _excepthook(exc_type: type[BaseException], exc_value: BaseException, exc_tb: object) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_tb)  # type: ignore[arg-type]
            return
        logging.getLogger("reelshelf").critical("Unhandled exception", exc_info=(exc_type, exc_value, exc_tb))

    sys.excepthook = _excepthook  # type: ignore[assignment]


def setup_logging(log_level: str = "info", log_dir: Path | None = None) -> None:
    """Configure structlog on top of stdlib logging.

    Parameters
    ----------
    log_level:
        Level name from the daemon config (``debug``, ``info``, ...).
    log_dir:
        Where ``daemon.log`` and ``session.log`` go.  With *None* no handlers
        are attached; events still flow through structlog.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    structlog.configure(
        processors=[*_shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        human = structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(colors=False),
            foreign_pre_chain=_shared_processors,
        )
        as_json = structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=_shared_processors,
        )
        root.addHandler(_file_handler(log_dir / DAEMON_LOG, human))
        root.addHandler(_file_handler(log_dir / SESSION_LOG, as_json, only=SESSION_LOGGER))

    for name in _QUIETED:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    _install_excepthook()
