"""Unified logging configuration for the forge CLI and library.

Library modules only ever do ``logger = logging.getLogger(__name__)``;
handlers are installed once by the entrypoint through
:func:`setup_logging`.

Provides:
    - Console and optional file handler
    - JSON output mode for tooling ingestion
    - Contextual fields (file, stage) attached to every record
    - Warning capture (Python warnings → logging)

Public API:
    setup_logging(log_level="INFO", json=False, context={"app": "forge"})
    push_context(file="board.gcode", stage="cut_board")
    log_context(file="board.gcode")   # context manager

Format examples:
    Human: 2026-03-02T09:14:07.512Z | INFO     | file=top.gcode stage=engrave_mask | Planned 3 passes
    JSON:  {"t":"2026-03-02T09:14:07.512Z","lvl":"INFO","file":"top.gcode","msg":"..."}

Context uses contextvars, so records emitted by parallel file tasks carry
the fields of the task that produced them.  Repeated setup_logging()
calls replace handlers instead of duplicating them.
"""

import contextlib
import contextvars
import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional


_context_var: contextvars.ContextVar = contextvars.ContextVar(
    "pcb_forge_logging_context", default={}
)

_configured = False


class ContextFormatter(logging.Formatter):
    """Formatter that appends contextual fields from :func:`push_context`.

    Parameters
    ----------
    fmt_mode : str
        ``"human"`` or ``"json"``.
    use_color : bool
        Colorize the level name when writing to a terminal.
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
        "RESET": "\033[0m",
    }

    def __init__(self, fmt_mode: str = "human", use_color: bool = True):
        super().__init__()
        self.fmt_mode = fmt_mode
        self.use_color = use_color and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        context = _context_var.get()
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
        if self.fmt_mode == "json":
            return self._format_json(record, ts, context)
        return self._format_human(record, ts, context)

    def _format_json(self, record: logging.LogRecord, ts: datetime, context: dict) -> str:
        log_dict = {
            "t": ts.isoformat(),
            "lvl": record.levelname,
            "name": record.name,
            "pid": os.getpid(),
            "msg": record.getMessage(),
        }
        log_dict.update(context)
        if record.exc_info:
            log_dict["exc"] = self.formatException(record.exc_info)
        return json.dumps(log_dict, default=str)

    def _format_human(self, record: logging.LogRecord, ts: datetime, context: dict) -> str:
        ts_str = ts.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"

        level = f"{record.levelname:8s}"
        if self.use_color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.COLORS['RESET']}"

        parts = [ts_str, "|", level, "|"]
        context_str = " ".join(f"{k}={v}" for k, v in context.items())
        if context_str:
            parts.extend([context_str, "|"])
        parts.append(record.getMessage())

        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    *,
    json: bool = False,
    color: bool = True,
    to_stderr: bool = True,
    capture_warnings: bool = True,
    context: Optional[Dict[str, Any]] = None,
) -> List[logging.Handler]:
    """Configure the root logger (idempotent).

    Parameters
    ----------
    log_level : str
        "DEBUG", "INFO", "WARNING", "ERROR" or "CRITICAL".
    log_file : str, optional
        Also write records to this file (always uncolored).
    json : bool
        Use JSON lines instead of the human format.
    color : bool
        Colorize console output when stderr is a terminal.
    to_stderr : bool
        Install a console handler.
    capture_warnings : bool
        Route ``warnings.warn`` through logging.
    context : dict, optional
        Initial contextual fields, e.g. ``{"app": "forge"}``.

    Returns
    -------
    list[logging.Handler]
        Handlers that were installed.
    """
    global _configured

    root = logging.getLogger()
    if _configured:
        root.handlers.clear()
    root.setLevel(getattr(logging, log_level.upper()))

    fmt_mode = "json" if json else "human"
    handlers: List[logging.Handler] = []

    if to_stderr:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(ContextFormatter(fmt_mode, color))
        handlers.append(console)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(ContextFormatter(fmt_mode, use_color=False))
        handlers.append(file_handler)

    for handler in handlers:
        root.addHandler(handler)

    if context:
        push_context(**context)

    if capture_warnings:
        logging.captureWarnings(True)

    _configured = True
    return handlers


def push_context(**kwargs: Any) -> None:
    """Add contextual fields to all subsequent log records.

    Examples
    --------
    >>> push_context(file="board.gcode")
    >>> logger.info("Started")  # → "... | file=board.gcode | Started"
    """
    current = _context_var.get()
    _context_var.set({**current, **kwargs})


@contextlib.contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Scope contextual fields to a ``with`` block.

    Examples
    --------
    >>> with log_context(file="bottom.gcode", stage="cut_board"):
    ...     logger.info("Planning")
    """
    token = _context_var.set({**_context_var.get(), **kwargs})
    try:
        yield
    finally:
        _context_var.reset(token)
