"""Logging setup: plain text by default, single-line JSON when structured."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

# LogRecord attributes promoted to top-level JSON keys when set via ``extra=``.
_CONTEXT_FIELDS = ("order_id", "owner_id", "leg_id")


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in _CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(
    *,
    structured: bool = False,
    log_file: Path | None = None,
    level: int = logging.INFO,
) -> None:
    """Configure the root logger.

    Args:
        structured: Emit JSON lines instead of the plain text format.
        log_file: If provided, also write logs to this file.
        level: Logging level (default INFO).
    """
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    formatter: logging.Formatter = (
        JSONFormatter() if structured else logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    )

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(str(log_file)))
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
