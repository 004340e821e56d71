"""
linkbridge.services.log_buffer — In-Memory Ring Buffer of Recent Log Lines
===========================================================================

A thread-safe ring buffer hooked into :mod:`logging`.  The plugin's status
text reads the latest warnings and errors from it, so verification findings
and module failures are visible to an admin without a console.

One buffer per process; nothing is persisted.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import UTC, datetime

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
DEFAULT_CAPACITY = 500
VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_buffer: LogBuffer | None = None
_lock = threading.Lock()


class LogEntry:
    """One captured log record."""
    __slots__ = ("timestamp", "level", "logger", "message")

    def __init__(self, timestamp: str, level: str, logger: str, message: str):
        self.timestamp = timestamp
        self.level = level
        self.logger = logger
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {
            "timestamp": self.timestamp,
            "level": self.level,
            "logger": self.logger,
            "message": self.message,
        }


class LogBuffer:
    """Bounded deque of :class:`LogEntry` guarded by a lock."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def append(self, entry: LogEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_entries(
        self,
        tail: int = 50,
        level: str | None = None,
        logger_filter: str | None = None,
    ) -> list[dict[str, str]]:
        """Newest *tail* entries at or above *level*, oldest first."""
        min_level = getattr(logging, level.upper(), 0) if level else 0
        with self._lock:
            snapshot = list(self._entries)

        results = [
            e.to_dict() for e in snapshot
            if (not min_level or getattr(logging, e.level, 0) >= min_level)
            and (not logger_filter or e.logger.startswith(logger_filter))
        ]
        if tail and len(results) > tail:
            results = results[-tail:]
        return results

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._entries)


class RingBufferHandler(logging.Handler):
    """Logging handler feeding a :class:`LogBuffer`."""

    def __init__(self, buffer: LogBuffer, level: int = logging.INFO) -> None:
        super().__init__(level)
        self._buffer = buffer

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._buffer.append(LogEntry(
                timestamp=datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                level=record.levelname,
                logger=record.name,
                message=record.getMessage(),
            ))
        except Exception:
            self.handleError(record)


# ---------------------------------------------------------------------------
# Process-wide access
# ---------------------------------------------------------------------------
def get_buffer() -> LogBuffer:
    global _buffer
    if _buffer is None:
        with _lock:
            if _buffer is None:
                _buffer = LogBuffer()
    return _buffer


def install_handler(level: int = logging.INFO, logger_name: str = "linkbridge") -> RingBufferHandler:
    """Attach a ring-buffer handler to *logger_name* (idempotent)."""
    target = logging.getLogger(logger_name)
    for h in target.handlers:
        if isinstance(h, RingBufferHandler):
            return h
    handler = RingBufferHandler(get_buffer(), level=level)
    target.addHandler(handler)
    return handler


def get_logs(
    tail: int = 50,
    level: str | None = None,
    logger_filter: str | None = None,
) -> list[dict[str, str]]:
    return get_buffer().get_entries(tail=tail, level=level, logger_filter=logger_filter)


def recent_problems(limit: int = 5) -> list[str]:
    """The last *limit* warning-or-worse messages, formatted for status text."""
    return [
        f"{e['level']}: {e['message'].splitlines()[0] if e['message'] else ''}"
        for e in get_logs(tail=limit, level="WARNING")
    ]


def set_capture_level(level_name: str, logger_name: str = "linkbridge") -> str:
    """Change the minimum captured level.  Returns the level name."""
    level_name = level_name.upper()
    if level_name not in VALID_LEVELS:
        raise ValueError(f"Invalid level: {level_name}. Must be one of {VALID_LEVELS}")
    numeric = getattr(logging, level_name)
    install_handler(logger_name=logger_name).setLevel(numeric)
    return level_name
