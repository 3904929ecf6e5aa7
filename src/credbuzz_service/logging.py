"""
Structured JSON logging for the CredBuzz service.

Every line is one JSON object carrying the service name, so the stdout
stream and the per-day files under ``logging.directory`` can be shipped
as-is. Module loggers hang off the ``credbuzz`` logger; ``setup_logging``
is the only place handlers are attached.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any

SERVICE_LOGGER_NAME = "credbuzz"
PACKAGE_PREFIX = "credbuzz_service."

VALID_LOG_LEVELS: frozenset[str] = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

# Attributes every LogRecord has; anything else came in through ``extra=``.
_RESERVED = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime", "service"}


class ServiceNameFilter(logging.Filter):
    """Stamps the service name on records passing through a handler."""

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = self.service_name
        return True


class JSONFormatter(logging.Formatter):
    """Render a record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(
                timespec="milliseconds"
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        service = getattr(record, "service", None)
        if service is not None:
            entry["service"] = service
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        extra = {k: v for k, v in record.__dict__.items() if k not in _RESERVED}
        if extra:
            entry["extra"] = extra
        return json.dumps(entry, default=str)


class DailyFileHandler(TimedRotatingFileHandler):
    """Writes to ``<directory>/YYYY-MM-DD.log``, switching files at UTC midnight."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        super().__init__(self._today_path(), when="midnight", utc=True, encoding="utf-8")

    def _today_path(self) -> str:
        return str(self.directory / f"{datetime.now(tz=UTC):%Y-%m-%d}.log")

    def doRollover(self) -> None:  # noqa: N802
        if self.stream:
            self.stream.close()
            self.stream = None  # type: ignore[assignment]
        self.baseFilename = str(Path(self._today_path()).resolve())
        if not self.delay:
            self.stream = self._open()
        self.rolloverAt = self.computeRollover(int(datetime.now(tz=UTC).timestamp()))


def setup_logging(level: str, service_name: str, log_directory: str) -> logging.Logger:
    """
    Attach stdout and daily-file JSON handlers to the service logger.

    Calling it again replaces the previous handlers, so the app factory and
    tests can reconfigure freely.

    Raises:
        ValueError: If level is not a standard logging level name
    """
    level_name = level.upper()
    if level_name not in VALID_LOG_LEVELS:
        raise ValueError(f"Invalid log level: {level}. Must be one of {sorted(VALID_LOG_LEVELS)}")

    directory = Path(log_directory)
    directory.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(SERVICE_LOGGER_NAME)
    for old in list(logger.handlers):
        old.close()
    logger.handlers.clear()
    logger.setLevel(level_name)
    logger.propagate = False

    formatter = JSONFormatter()
    service_filter = ServiceNameFilter(service_name)
    for handler in (logging.StreamHandler(sys.stdout), DailyFileHandler(directory)):
        handler.setFormatter(formatter)
        handler.addFilter(service_filter)
        logger.addHandler(handler)

    logger.debug("Logging configured", extra={"level": level_name})
    return logger


def get_logger(name: str) -> logging.Logger:
    """Module logger under the service logger (``credbuzz.<module path>``)."""
    name = name.removeprefix(PACKAGE_PREFIX)
    return logging.getLogger(f"{SERVICE_LOGGER_NAME}.{name}")
