# src/iac_supervisor/core/logging.py
"""Structured diagnostic logging.

Diagnostics are written to stderr only: stdout carries the child's output,
which the orchestrator may parse (e.g. `output -json`).
Every record is stamped with the wrapper's pid and process group, so the
interleaved output of many parallel module wrappers can be told apart.

structlog renders each event and hands the finished line to the standard
library logger of the same name. The stderr handler's lock is an RLock, so
a relay handler that logs while the main thread is already inside emit()
re-enters instead of waiting on itself.
"""

import logging
import os
import sys
from typing import Any

import structlog

_configured = False


class StderrHandler(logging.StreamHandler):  # type: ignore[type-arg]
    """StreamHandler writing to whatever sys.stderr is at emit time."""

    def __init__(self) -> None:
        super().__init__(sys.stderr)

    @property  # type: ignore[override]
    def stream(self) -> Any:
        return sys.stderr

    @stream.setter
    def stream(self, value: Any) -> None:
        # Always follows sys.stderr
        pass

    def handleError(self, record: logging.LogRecord) -> None:
        # A nested emit from a signal handler lands while the buffered stream
        # is mid-write and gets "reentrant call"; that one line is dropped
        if isinstance(sys.exc_info()[1], RuntimeError):
            return
        super().handleError(record)


def _process_identity() -> dict[str, Any]:
    pid = os.getpid()
    try:
        pgid: int | str = os.getpgid(pid)
    except OSError:
        pgid = "unknown"
    return {"pid": pid, "pgid": pgid}


def _add_process_identity(
    logger: Any, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """Stamp pid/pgid at emit time (they differ between wrapper and forks)."""
    for key, value in _process_identity().items():
        event_dict.setdefault(key, value)
    return event_dict


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog and the root stderr handler for the wrapper process.

    Safe to call more than once; the last call wins.

    Args:
        level: Minimum level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Render JSON lines instead of the console format
    """
    global _configured

    numeric_level = logging.getLevelNamesMapping()[level.upper()]

    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, StderrHandler):
            root.removeHandler(handler)
    handler = StderrHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)
    root.setLevel(numeric_level)

    renderer: structlog.types.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer(sort_keys=True)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _add_process_identity,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )
    _configured = True


def get_logger(name: str | None = None, **initial_values: Any) -> Any:
    """Return a lazily bound structlog logger.

    Falls back to the default configuration if configure_logging() was
    never called (library use, tests).
    """
    if not _configured:
        configure_logging()
    if name is None:
        return structlog.get_logger(**initial_values)
    return structlog.get_logger(name, **initial_values)
