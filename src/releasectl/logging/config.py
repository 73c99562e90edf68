"""Structured logging for releasectl.

All events go through structlog and end up in stdlib handlers on the root
logger, so log lines from the kubernetes client share one format with ours:

* a console handler on stderr, human readable or JSON, at the level chosen
  by ``--verbose``/``--debug``;
* a rotating JSON file under ``~/.local/state/releasectl`` that always
  records DEBUG, with files older than :data:`RETENTION_DAYS` pruned.

stdout is left to command output (rendered manifests, ``-o json``).
"""

from __future__ import annotations

import logging
import sys
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog

LOG_DIR = Path.home() / ".local" / "state" / "releasectl"
LOG_FILE = LOG_DIR / "releasectl.log"
MAX_LOG_SIZE = 10 * 1024 * 1024
BACKUP_COUNT = 5
RETENTION_DAYS = 30

CONSOLE_HANDLER_NAME = "releasectl-console"
FILE_HANDLER_NAME = "releasectl-file"

NOISY_LOGGERS = ("kubernetes", "urllib3")

_PRE_CHAIN: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.UnicodeDecoder(),
]


def _level(verbose: bool, debug: bool) -> int:
    if debug:
        return logging.DEBUG
    return logging.INFO if verbose else logging.WARNING


def _formatter(renderer: structlog.types.Processor) -> logging.Formatter:
    return structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=_PRE_CHAIN)


def _install_handler(handler: logging.Handler, name: str) -> None:
    """Add ``handler`` to the root logger, replacing one installed earlier under ``name``."""
    handler.set_name(name)
    root = logging.getLogger()
    for existing in [h for h in root.handlers if h.get_name() == name]:
        root.removeHandler(existing)
        existing.close()
    root.addHandler(handler)


def _cleanup_old_logs() -> None:
    """Delete log files (current or rotated) not written to in RETENTION_DAYS."""
    if not LOG_DIR.exists():
        return
    cutoff = time.time() - RETENTION_DAYS * 24 * 60 * 60
    for path in LOG_DIR.glob(f"{LOG_FILE.name}*"):
        try:
            if path.stat().st_mtime < cutoff:
                path.unlink()
        except OSError:
            continue


def _setup_file_logging() -> None:
    """Write every event at DEBUG and above as JSON to LOG_FILE."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    _cleanup_old_logs()

    handler = RotatingFileHandler(LOG_FILE, maxBytes=MAX_LOG_SIZE, backupCount=BACKUP_COUNT)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
    _install_handler(handler, FILE_HANDLER_NAME)


def configure_logging(
    verbose: bool = False,
    debug: bool = False,
    json_output: bool = False,
    log_to_file: bool = True,
) -> None:
    """Configure structlog and the root logger's handlers.

    Safe to call more than once: handlers installed by an earlier call are
    replaced.

    Args:
        verbose: Show INFO events on the console.
        debug: Show DEBUG events on the console, with locals in tracebacks.
        json_output: Render console events as JSON lines.
        log_to_file: Also write to the rotating file log.
    """
    level = _level(verbose, debug)

    structlog.configure(
        processors=[*_PRE_CHAIN, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    renderer: structlog.types.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=sys.stderr.isatty(),
            exception_formatter=structlog.dev.RichTracebackFormatter(show_locals=debug),
        )
    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    console.setFormatter(_formatter(renderer))
    _install_handler(console, CONSOLE_HANDLER_NAME)

    logging.getLogger().setLevel(logging.DEBUG)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if log_to_file:
        _setup_file_logging()


def get_logger(name: str | None = None, **context: Any) -> Any:
    """A structlog logger with ``context`` bound to every event."""
    logger = structlog.get_logger(name)
    return logger.bind(**context) if context else logger
