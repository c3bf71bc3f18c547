# ============================================================================
# Log Buffer - In-Memory Log Capture for the Management API
# ============================================================================

"""
Logging setup for the bridge:
1. Console handler (always)
2. Rotating file handler (optional, LOG_FILE_*)
3. BufferHandler feeding a circular in-memory LogBuffer (last N records),
   served by GET /api/service/logs
4. SanitizingFilter on every handler so credentials never reach an output
"""

import logging
from collections import Counter, deque
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Deque, Dict, List, Optional

from access_bridge.config import constants
from access_bridge.core.log_sanitizer import SanitizingFilter

PACKAGE_LOGGER = "access_bridge"

# ============================================================================
# BUFFERED ENTRIES
# ============================================================================

@dataclass(frozen=True)
class LogEntry:
    timestamp: str
    level: str
    logger: str
    message: str
    module: str
    function: str
    line: int

    @classmethod
    def from_record(cls, record: logging.LogRecord) -> "LogEntry":
        return cls(
            timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            level=record.levelname,
            logger=record.name,
            message=record.getMessage(),
            module=record.module,
            function=record.funcName,
            line=record.lineno,
        )

    def matches(self, level: Optional[str], needle: Optional[str]) -> bool:
        if level and self.level != level:
            return False
        if needle and needle not in self.message.lower() and needle not in self.logger.lower():
            return False
        return True


class LogBuffer:
    """Bounded ring of recent log entries, oldest first."""

    def __init__(self, max_size: int = constants.LOG_BUFFER_SIZE):
        self.capacity = max_size
        self._entries: Deque[LogEntry] = deque(maxlen=max_size)
        # records can arrive from worker threads (asyncio.to_thread)
        self._lock = Lock()

    def add_log(self, record: logging.LogRecord) -> None:
        entry = LogEntry.from_record(record)
        with self._lock:
            self._entries.append(entry)

    def _snapshot(self) -> List[LogEntry]:
        with self._lock:
            return list(self._entries)

    def get_logs(
        self,
        level: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        """
        Most recent `limit` entries matching level (exact, case-insensitive)
        and search (substring of message or logger name).
        """
        if limit <= 0:
            return []
        wanted_level = level.upper() if level else None
        needle = search.lower() if search else None
        matching = [e for e in self._snapshot() if e.matches(wanted_level, needle)]
        return [asdict(e) for e in matching[-limit:]]

    def get_summary(self) -> Dict[str, Any]:
        entries = self._snapshot()
        return {
            "total": len(entries),
            "capacity": self.capacity,
            "by_level": dict(Counter(e.level for e in entries)),
        }

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

# ============================================================================
# HANDLER
# ============================================================================

class BufferHandler(logging.Handler):
    """Feeds every record it receives into a LogBuffer."""

    def __init__(self, buffer: LogBuffer):
        super().__init__()
        self.buffer = buffer

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.buffer.add_log(record)
        except Exception:
            self.handleError(record)

# ============================================================================
# SETUP
# ============================================================================

def setup_logging(settings: Any) -> LogBuffer:
    """
    Configure the package logger from settings and return its LogBuffer.

    Safe to call more than once: handlers installed by a previous call are
    replaced.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(settings.log_level)

    for handler in list(logger.handlers):
        if getattr(handler, "_access_bridge", False):
            logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(constants.LOG_FORMAT)
    log_buffer = LogBuffer(max_size=settings.log_buffer_size)

    handlers: List[logging.Handler] = [logging.StreamHandler(), BufferHandler(log_buffer)]

    if settings.log_file_enabled:
        log_path = Path(settings.log_file_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                log_path,
                maxBytes=settings.log_file_max_bytes,
                backupCount=settings.log_file_backup_count,
                encoding="utf-8",
            )
        )

    for handler in handlers:
        handler._access_bridge = True
        handler.setFormatter(formatter)
        if settings.log_sanitization:
            handler.addFilter(SanitizingFilter())
        logger.addHandler(handler)

    logger.info(
        f"Logging configured: level={settings.log_level}, "
        f"file={'on' if settings.log_file_enabled else 'off'}, "
        f"buffer={settings.log_buffer_size}, sanitization={settings.log_sanitization}"
    )
    return log_buffer
