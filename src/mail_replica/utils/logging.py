"""Logging setup for CLI runs and library use."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from mail_replica.config.settings import LoggingSettings

# Attributes every LogRecord carries; anything else arrived through ``extra=``.
_STANDARD_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys()
) | {"message", "asctime", "taskName"}

_NOISY_LOGGERS: dict[str, int] = {
    "googleapiclient.discovery": logging.WARNING,
    "googleapiclient.discovery_cache": logging.ERROR,
    "google_auth_httplib2": logging.WARNING,
    "urllib3": logging.WARNING,
}


def _jsonable(value: object) -> Any:
    """Return ``value`` if JSON can encode it, else its string form."""
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class JsonLogFormatter(logging.Formatter):
    """Render records as one JSON object per line, including ``extra`` fields."""

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON.

        Args:
            record: Log record to format.

        Returns:
            JSON string representation.
        """
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(
                timespec="milliseconds",
            ),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        payload.update(
            {
                key: _jsonable(value)
                for key, value in vars(record).items()
                if key not in _STANDARD_RECORD_ATTRS and not key.startswith("_")
            },
        )
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _build_formatter(json_logs: bool) -> logging.Formatter:
    """Pick the JSON or human formatter."""
    if json_logs:
        return JsonLogFormatter()
    return logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def configure_logging(*, settings: LoggingSettings) -> None:
    """Install root handlers for the configured level and format.

    Console output goes to stderr so it does not interleave with command
    output. When ``log_file`` is set, the same records are also appended there.

    Args:
        settings: Logging settings.
    """
    level_name = settings.level.strip().upper() if settings.level else "INFO"
    level = getattr(logging, level_name, logging.INFO)
    formatter = _build_formatter(settings.json_logs)

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.log_file is not None:
        log_path: Path = settings.log_file.expanduser().resolve()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    for name, noisy_level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)
