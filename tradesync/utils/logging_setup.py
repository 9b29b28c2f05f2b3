"""
Category logging for tradesync.

Every module logs through get_logger(__name__), which routes it to one of
five category loggers under the "tradesync" root:

- system: startup, shutdown, config, migration
- adapter: venue adapters, provider codes, transport failures
- data: partitioned store, integrity warnings, archiving, summaries
- sync: chunked fetching, cache state transitions, progress
- perf: operation timings

setup_category_logging() gives each category its own JSON-lines file under
logs/{date}/, written from a background QueueListener so the event loop only
enqueues records. The sync run ID is stamped on each record before it is
queued, so file lines carry the run that produced them.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from queue import SimpleQueue
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo

from .trace_context import get_run_id

LOGGER_ROOT = "tradesync"

CATEGORIES = ["system", "adapter", "data", "sync", "perf"]

# Short category tags used in log file names
FILE_TAGS = {
    "system": "sys",
    "adapter": "adp",
    "data": "dat",
    "sync": "syn",
    "perf": "prf",
}

# First matching prefix wins
MODULE_ROUTING: List[tuple[str, str]] = [
    ("tradesync.infrastructure.adapters", "adapter"),
    ("tradesync.infrastructure.stores", "data"),
    ("tradesync.services.summary_service", "data"),
    ("tradesync.services.migration_engine", "system"),
    ("tradesync.services", "sync"),
    ("tradesync.domain.services", "sync"),
    ("tradesync.domain", "system"),
    ("tradesync.config", "system"),
]


@dataclass
class _LoggingState:
    timezone: Optional[ZoneInfo] = None
    run_number: Optional[int] = None
    loggers: Dict[str, logging.Logger] = field(default_factory=dict)
    listeners: List[logging.handlers.QueueListener] = field(default_factory=list)


_state = _LoggingState()


def get_category_for_module(module_name: str) -> str:
    """Map a dotted module name to its log category (default: system)."""
    for prefix, category in MODULE_ROUTING:
        if module_name == prefix or module_name.startswith(prefix + "."):
            return category
    return "system"


def get_logger(module_name: str) -> logging.Logger:
    """
    Logger for a module, routed to its category.

    Usage:
        logger = get_logger(__name__)
        logger.info("Partition written", extra={"data": {"month": "2024-06"}})
    """
    return logging.getLogger(f"{LOGGER_ROOT}.{get_category_for_module(module_name)}")


def set_log_timezone(tz: Optional[str] = None) -> None:
    """Use an IANA zone for log timestamps; None or "local" means system time."""
    _state.timezone = ZoneInfo(tz) if tz and tz != "local" else None


def _format_timestamp(created: float) -> str:
    if _state.timezone is not None:
        return datetime.fromtimestamp(created, _state.timezone).isoformat()
    return datetime.fromtimestamp(created).astimezone().isoformat()


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line: ts, level, cat, run, msg, plus ``data`` when a
    record was logged with ``extra={"data": {...}}`` and ``exception`` when it
    carries exc_info.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": _format_timestamp(record.created),
            "level": record.levelname,
            "cat": _category_from_logger_name(record.name),
            "run": getattr(record, "run", None) or get_run_id(),
            "msg": record.getMessage(),
        }
        data = getattr(record, "data", None)
        if data:
            entry["data"] = data
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _category_from_logger_name(name: str) -> str:
    root, _, rest = name.partition(".")
    category = rest.split(".", 1)[0]
    if root == LOGGER_ROOT and category in CATEGORIES:
        return category
    return "system"


class _RunIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.run = get_run_id()
        return True


_CONSOLE_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}


class ConsoleFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL [run] cat: message``, coloured by level on a TTY."""

    def __init__(self, use_colors: bool = True):
        super().__init__("%(asctime)s %(levelname)-7s [%(run)s] %(cat)s: %(message)s", "%H:%M:%S")
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        record.cat = _category_from_logger_name(record.name)
        line = super().format(record)
        if self.use_colors:
            return f"{_CONSOLE_COLORS.get(record.levelno, '')}{line}\033[0m"
        return line


def _next_run_number(day_dir: Path, env: str, date_str: str) -> int:
    """One past the highest run number already used for today's files."""
    highest = 0
    for path in day_dir.glob(f"{LOGGER_ROOT}_{env}_*_{date_str}_*.log"):
        tail = path.stem.rsplit("_", 1)[-1]
        if tail.isdigit():
            highest = max(highest, int(tail))
    return highest + 1


def reset_session_run_number() -> None:
    """Forget the run number so the next setup rescans the log directory."""
    _state.run_number = None


def _stop_listeners() -> None:
    while _state.listeners:
        listener = _state.listeners.pop()
        listener.stop()
        for handler in listener.handlers:
            handler.close()


def setup_category_logging(
    env: str,
    log_dir: str = "./logs",
    level: str = "INFO",
    console: bool = False,
    verbose: bool = False,
) -> Dict[str, logging.Logger]:
    """
    Attach file (and optionally console) handlers to every category logger.

    Files are named ``logs/{date}/tradesync_{env}_{tag}_{date}_{run}.log``.
    The run number is chosen once per process so all categories of one
    session share it. Calling this again replaces the previous handlers.

    Returns:
        Category name -> logger.
    """
    _stop_listeners()

    date_str = datetime.now().strftime("%Y-%m-%d")
    day_dir = Path(log_dir) / date_str
    day_dir.mkdir(parents=True, exist_ok=True)
    if _state.run_number is None:
        _state.run_number = _next_run_number(day_dir, env, date_str)

    file_level = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)

    for category in CATEGORIES:
        logger = logging.getLogger(f"{LOGGER_ROOT}.{category}")
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)
        logger.setLevel(file_level)
        logger.propagate = False

        file_handler = logging.FileHandler(
            day_dir / f"{LOGGER_ROOT}_{env}_{FILE_TAGS[category]}_{date_str}_{_state.run_number}.log",
            encoding="utf-8",
        )
        file_handler.setFormatter(JSONFormatter())

        log_queue: SimpleQueue = SimpleQueue()
        queue_handler = logging.handlers.QueueHandler(log_queue)
        queue_handler.addFilter(_RunIdFilter())
        logger.addHandler(queue_handler)
        listener = logging.handlers.QueueListener(log_queue, file_handler)
        listener.start()
        _state.listeners.append(listener)

        if console:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.addFilter(_RunIdFilter())
            console_handler.setFormatter(ConsoleFormatter(use_colors=sys.stderr.isatty()))
            logger.addHandler(console_handler)

        _state.loggers[category] = logger

    return dict(_state.loggers)


def flush_all_loggers() -> None:
    """Flush handlers attached directly to the category loggers."""
    for logger in _state.loggers.values():
        for handler in logger.handlers:
            handler.flush()


def shutdown_logging() -> None:
    """Drain the queues and stop the background listeners."""
    _stop_listeners()
