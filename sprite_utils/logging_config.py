"""Logging setup shared by the batch runner and the engine check.

Every record carries the contextual fields pushed for the current
thread or task (``app``, ``step``, ``op`` ...), so one engine call can be
followed through the facade, the generator and the process client.

Public API:
    setup_logging(log_level="INFO", log_file=None, json=False, context={"app": "run_ops"})
    push_context(sprite="hero.aseprite")
    pop_context(keys=["sprite"])
    with log_context(op="export_sprite"): ...
    install_excepthook()

Format examples:
    Human: 2026-03-02T13:45:12.345Z | INFO     | app=run_ops op=draw_pixels | Pixels drawn
    JSON:  {"t":"2026-03-02T13:45:12.345000+00:00","lvl":"INFO","app":"run_ops","msg":"..."}

JSON is only used for the file handler; the console stays human-readable.
Calling setup_logging() again replaces the handlers it installed before.
"""

from __future__ import annotations

import contextvars
import json
import logging
import logging.handlers
import os
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

_context_var: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    'sprite_log_context', default={}
)

_installed_handlers: List[logging.Handler] = []

LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Engine tooling that is chatty at DEBUG
DEFAULT_QUIET_LIBS = ("PIL",)


class ContextFormatter(logging.Formatter):
    """Render records with the current context fields.

    Parameters
    ----------
    fmt_mode : str
        ``"human"`` or ``"json"``.
    use_color : bool
        Color the level name; ignored unless stderr is a TTY.
    """

    LEVEL_COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }

    def __init__(self, fmt_mode: str = "human", use_color: bool = True):
        super().__init__()
        if fmt_mode not in ("human", "json"):
            raise ValueError(f"Unknown log format: {fmt_mode}. Use 'human' or 'json'.")
        self.fmt_mode = fmt_mode
        self.use_color = use_color and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
        context = _context_var.get()
        message = record.getMessage()

        if self.fmt_mode == "json":
            payload: Dict[str, Any] = {
                't': ts.isoformat(),
                'lvl': record.levelname,
                'name': record.name,
                'pid': os.getpid(),
                **context,
                'msg': message,
            }
            if record.exc_info:
                payload['exc'] = self.formatException(record.exc_info)
            return json.dumps(payload, default=str)

        level = f"{record.levelname:8s}"
        if self.use_color:
            level = f"{self.LEVEL_COLORS.get(record.levelname, '')}{level}\033[0m"
        fields = [ts.strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z', level]
        if context:
            fields.append(' '.join(f"{k}={v}" for k, v in context.items()))
        fields.append(message)
        line = ' | '.join(fields)
        if record.exc_info:
            line += '\n' + self.formatException(record.exc_info)
        return line


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    *,
    json: bool = False,
    color: bool = True,
    to_stderr: bool = True,
    rotate: Optional[Dict[str, Any]] = None,
    capture_warnings: bool = True,
    quiet_libs: Optional[List[str]] = None,
    context: Optional[Dict[str, Any]] = None,
) -> List[logging.Handler]:
    """Configure the root logger.

    Parameters
    ----------
    log_level : str
        "DEBUG", "INFO", "WARNING", "ERROR" or "CRITICAL" (any case)
    log_file : str, optional
        Also log to this file; parent directories are created
    json : bool
        JSON lines in the log file
    color : bool
        ANSI colors on the console
    to_stderr : bool
        Log to stderr
    rotate : dict, optional
        ``{"mode": "size", "max_bytes": ..., "backup_count": ...}`` or
        ``{"mode": "time", "when": "D", "interval": 1, "backup_count": ...}``
    capture_warnings : bool
        Route ``warnings.warn`` through logging
    quiet_libs : list[str], optional
        Loggers pinned to WARNING (default: PIL)
    context : dict, optional
        Fields pushed onto the context immediately

    Returns
    -------
    list[logging.Handler]
        The handlers now installed.

    Raises
    ------
    ValueError
        Unknown level or rotation mode.
    """
    level = log_level.upper()
    if level not in LEVELS:
        raise ValueError(f"Unknown log level: {log_level}. Use one of {', '.join(LEVELS)}.")

    root = logging.getLogger()
    while _installed_handlers:
        old = _installed_handlers.pop()
        root.removeHandler(old)
        old.close()
    root.setLevel(getattr(logging, level))

    handlers: List[logging.Handler] = []
    if to_stderr:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(ContextFormatter("human", color))
        handlers.append(console)
    if log_file:
        handlers.append(_file_handler(log_file, rotate, json))
    for handler in handlers:
        root.addHandler(handler)
    _installed_handlers.extend(handlers)

    if context:
        push_context(**context)
    for lib in (quiet_libs if quiet_libs is not None else DEFAULT_QUIET_LIBS):
        logging.getLogger(lib).setLevel(logging.WARNING)
    if capture_warnings:
        logging.captureWarnings(True)

    return list(handlers)


def _file_handler(
    log_file: str, rotate: Optional[Dict[str, Any]], json_format: bool,
) -> logging.Handler:
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    mode = rotate.get('mode', 'size') if rotate else None
    if mode is None:
        handler: logging.Handler = logging.FileHandler(log_file, encoding='utf-8')
    elif mode == 'size':
        handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=rotate.get('max_bytes', 10_000_000),
            backupCount=rotate.get('backup_count', 5),
            encoding='utf-8',
        )
    elif mode == 'time':
        handler = logging.handlers.TimedRotatingFileHandler(
            log_file,
            when=rotate.get('when', 'D'),
            interval=rotate.get('interval', 1),
            backupCount=rotate.get('backup_count', 7),
            encoding='utf-8',
        )
    else:
        raise ValueError(f"Unknown rotation mode: {mode}. Use 'size' or 'time'.")

    handler.setFormatter(ContextFormatter("json" if json_format else "human", use_color=False))
    return handler


# ---------------------------------------------------------------------------
# Context fields
# ---------------------------------------------------------------------------


def push_context(**kwargs: Any) -> None:
    """Add fields to every later record in this thread or task."""
    _context_var.set({**_context_var.get(), **kwargs})


def pop_context(keys: Optional[List[str]] = None) -> None:
    """Remove *keys* from the context, or everything when None."""
    if keys is None:
        _context_var.set({})
        return
    _context_var.set({k: v for k, v in _context_var.get().items() if k not in keys})


def get_context() -> Dict[str, Any]:
    return dict(_context_var.get())


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Fields that apply only inside the ``with`` block."""
    token = _context_var.set({**_context_var.get(), **kwargs})
    try:
        yield
    finally:
        _context_var.reset(token)


def install_excepthook() -> None:
    """Log uncaught exceptions (Ctrl+C excepted) before the process exits."""
    def log_exception(exc_type, exc_value, exc_traceback):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return
        logging.getLogger(__name__).critical(
            "Uncaught exception", exc_info=(exc_type, exc_value, exc_traceback)
        )

    sys.excepthook = log_exception
