"""Activity log files: writing, reading, and pruning.

The application logs to one file per level under ``logs/``
(``info.log``, ``warn.log``, ``error.log``, ``debug.log``), one entry per
line in the form::

    [2025-08-19T08:41:29.101Z] [INFO] Invoice scheduler initialized

An entry may carry structured data as a JSON object on the lines after
the message; it is split out into ``data`` when read back.

Usage:
    from billing_admin.activity_log import install_file_handlers, read_activity_logs

    install_file_handlers(Path("logs"))
    page = read_activity_logs(Path("logs"), page=1, limit=50)
    removed = clear_old_logs(Path("logs"), days=30)
"""

import json
import logging
import math
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

LOG_TYPES: tuple[str, ...] = ("info", "error", "warn", "debug")
DEFAULT_VIEW_TYPES: tuple[str, ...] = ("info", "error", "warn")
MAX_LINES_PER_FILE = 5000

_LINE_RE = re.compile(r"^\[([^\]]+)\] \[([^\]]+)\] (.+)$", re.DOTALL)
_TRAILING_JSON_RE = re.compile(r"\n(\{.*\})$", re.DOTALL)
_FIRST_BRACKET_RE = re.compile(r"\[([^\]]+)\]")
_LOG_TYPE_RE = re.compile(r"^[a-z]+$")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)

# logging level -> file (and label) it is written under
_LEVEL_FILES: dict[int, str] = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "error",
}


def parse_log_timestamp(value: str) -> datetime | None:
    """Parse an ISO 8601 log timestamp; naive values are taken as UTC."""
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ============================================================================
# Models
# ============================================================================


class ActivityLogEntry(BaseModel):
    """One parsed log entry."""

    id: str
    created_at: str
    level: str
    message: str
    type: str
    data: Any = None


class ActivityLogPage(BaseModel):
    """A page of entries from all requested log files, newest first."""

    logs: list[ActivityLogEntry] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 50
    total_pages: int = 0


# ============================================================================
# Writing
# ============================================================================


class ActivityLogFormatter(logging.Formatter):
    """Formats records as ``[<ISO timestamp>] [<LEVEL>] <message>``.

    A ``data`` attribute on the record (``logger.info(..., extra={"data": {...}})``)
    is appended as JSON on the following line.
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        timestamp = created.strftime("%Y-%m-%dT%H:%M:%S.") + f"{created.microsecond // 1000:03d}Z"
        level = _LEVEL_FILES.get(record.levelno, record.levelname.lower()).upper()

        line = f"[{timestamp}] [{level}] {record.getMessage()}"
        data = getattr(record, "data", None)
        if data is not None:
            line += "\n" + json.dumps(data, default=str)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class _ExactLevelFilter(logging.Filter):
    def __init__(self, log_type: str) -> None:
        super().__init__()
        self.log_type = log_type

    def filter(self, record: logging.LogRecord) -> bool:
        return _LEVEL_FILES.get(record.levelno) == self.log_type


def install_file_handlers(
    logs_dir: Path,
    logger_name: str = "billing_admin",
) -> list[logging.Handler]:
    """Write records of ``logger_name`` to ``<logs_dir>/<type>.log``.

    Each file receives only its own level; CRITICAL goes to ``error.log``.

    Returns:
        The handlers added, so callers can remove them again.
    """
    logs_dir = Path(logs_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)
    target = logging.getLogger(logger_name)

    formatter = ActivityLogFormatter()
    handlers: list[logging.Handler] = []
    for log_type in LOG_TYPES:
        handler = logging.FileHandler(logs_dir / f"{log_type}.log", encoding="utf-8")
        handler.setFormatter(formatter)
        handler.addFilter(_ExactLevelFilter(log_type))
        target.addHandler(handler)
        handlers.append(handler)
    return handlers


# ============================================================================
# Reading
# ============================================================================


def _read_lines(path: Path) -> list[str]:
    lines = [ln for ln in path.read_text(encoding="utf-8").split("\n") if ln.strip()]
    if len(lines) > MAX_LINES_PER_FILE:
        logger.warning(
            "Log file %s has %d lines, limiting to last %d",
            path,
            len(lines),
            MAX_LINES_PER_FILE,
        )
        lines = lines[-MAX_LINES_PER_FILE:]
    return lines


def _group_entries(lines: list[str]) -> list[str]:
    """Join continuation lines onto the entry they belong to."""
    entries: list[str] = []
    for line in lines:
        if _LINE_RE.match(line) or not entries:
            entries.append(line)
        else:
            entries[-1] += "\n" + line
    return entries


def parse_entry(text: str, log_type: str) -> dict | None:
    """Parse one entry into a dict, or None if it isn't in log format."""
    match = _LINE_RE.match(text)
    if match is None:
        return None
    timestamp, level, message = match.groups()

    data = None
    json_match = _TRAILING_JSON_RE.search(message)
    if json_match:
        try:
            data = json.loads(json_match.group(1))
        except json.JSONDecodeError:
            pass
        else:
            message = message[: json_match.start()].strip()

    return {
        "timestamp": timestamp,
        "level": level.lower(),
        "message": message,
        "data": data,
        "type": log_type,
    }


def _check_log_type(log_type: str) -> None:
    if not _LOG_TYPE_RE.match(log_type):
        raise ValueError(f"Invalid log type: {log_type!r}")


def read_activity_logs(
    logs_dir: Path,
    page: int = 1,
    limit: int = 50,
    types: tuple[str, ...] | list[str] = DEFAULT_VIEW_TYPES,
) -> ActivityLogPage:
    """Merge the requested log files, newest first, and return one page.

    Missing files are skipped; a file that can't be read is logged and
    skipped.  Lines that don't match the log format are ignored.

    Raises:
        ValueError: If ``page``/``limit`` is below 1 or a type name is not
            a plain lower-case word.
    """
    if page < 1 or limit < 1:
        raise ValueError("page and limit must be positive")
    for log_type in types:
        _check_log_type(log_type)

    logs_dir = Path(logs_dir)
    all_logs: list[dict] = []

    for log_type in types:
        path = logs_dir / f"{log_type}.log"
        if not path.is_file():
            continue
        try:
            lines = _read_lines(path)
        except (OSError, UnicodeDecodeError) as e:
            logger.error("Error reading log file %s: %s", path, e)
            continue
        for text in _group_entries(lines):
            entry = parse_entry(text, log_type)
            if entry is not None:
                all_logs.append(entry)

    all_logs.sort(
        key=lambda e: parse_log_timestamp(e["timestamp"]) or _EPOCH,
        reverse=True,
    )

    start = (page - 1) * limit
    page_logs = [
        ActivityLogEntry(
            id=f"{e['timestamp']}-{e['type']}-{start + i}",
            created_at=e["timestamp"],
            level=e["level"],
            message=e["message"],
            type=e["type"],
            data=e["data"],
        )
        for i, e in enumerate(all_logs[start : start + limit])
    ]

    return ActivityLogPage(
        logs=page_logs,
        total=len(all_logs),
        page=page,
        limit=limit,
        total_pages=math.ceil(len(all_logs) / limit),
    )


# ============================================================================
# Pruning
# ============================================================================


def clear_old_logs(
    logs_dir: Path,
    days: int = 30,
    now: datetime | None = None,
) -> int:
    """Drop entries older than ``days`` from every log file.

    An entry (with its continuation lines) is kept when its first ``[...]``
    group is a timestamp at or after the cutoff, or when it has no
    parseable timestamp at all.  Blank lines are dropped without being
    counted.

    Returns:
        Number of entries removed across all files.
    """
    if days < 0:
        raise ValueError("days must not be negative")

    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
    if cutoff.tzinfo is None:
        cutoff = cutoff.replace(tzinfo=timezone.utc)

    def keep(entry: str) -> bool:
        match = _FIRST_BRACKET_RE.search(entry.split("\n", 1)[0])
        if match is None:
            return True
        logged_at = parse_log_timestamp(match.group(1))
        return logged_at is None or logged_at >= cutoff

    cleared = 0
    for log_type in LOG_TYPES:
        path = Path(logs_dir) / f"{log_type}.log"
        if not path.is_file():
            continue
        try:
            lines = [ln for ln in path.read_text(encoding="utf-8").split("\n") if ln.strip()]
            entries = _group_entries(lines)
            kept = [e for e in entries if keep(e)]
            path.write_text("".join(f"{e}\n" for e in kept), encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.error("Error clearing log file %s: %s", path, e)
            continue
        cleared += len(entries) - len(kept)

    logger.info("Cleared %d old log entries (older than %d days)", cleared, days)
    return cleared
