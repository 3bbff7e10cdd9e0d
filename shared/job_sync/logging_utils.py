from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from shared.job_sync.models import LogLevel, SyncLogEntry

LogCallback = Callable[[str, LogLevel], None]
LogSink = Callable[[SyncLogEntry], None]

_LEVELS: Dict[str, int] = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def log_event(logger: logging.Logger, level: int, event: str, **fields: Any) -> None:
    """Log a single-line JSON event for easy parsing in log aggregators."""

    payload: Dict[str, Any] = {"event": event, **fields}
    try:
        msg = json.dumps(payload, ensure_ascii=True, sort_keys=True, default=str)
    except TypeError:
        safe_payload = {
            k: (v if isinstance(v, (str, int, float, bool)) or v is None else str(v)) for k, v in payload.items()
        }
        msg = json.dumps(safe_payload, ensure_ascii=True, sort_keys=True)
    logger.log(level, msg)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunLogger:
    """Collects leveled, timestamped entries for one run.

    Every entry goes to the Python logger and, when given, to ``sink`` (the
    hook a streaming caller uses to forward lines to its client).
    """

    def __init__(
        self,
        logger: logging.Logger,
        *,
        sink: Optional[LogSink] = None,
        source: Optional[str] = None,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self._logger = logger
        self._sink = sink
        self._source = source
        self._now = now
        self.entries: List[SyncLogEntry] = []

    def __call__(self, message: str, level: LogLevel = "info") -> None:
        self.log(level, message)

    def log(self, level: LogLevel, message: str, *, source: Optional[str] = None) -> SyncLogEntry:
        entry = SyncLogEntry(timestamp=self._now(), level=level, message=message, source=source or self._source)
        self.entries.append(entry)
        self._logger.log(_LEVELS.get(level, logging.INFO), "[%s] %s", level, message)
        if self._sink is not None:
            self._sink(entry)
        return entry

    def info(self, message: str) -> None:
        self.log("info", message)

    def success(self, message: str) -> None:
        self.log("success", message)

    def warning(self, message: str) -> None:
        self.log("warning", message)

    def error(self, message: str) -> None:
        self.log("error", message)
