"""
Structured JSON logging for analytics-etl

All module loggers live under the ``analytics_etl`` logger, which owns the
single handler. Stage runs, skipped records and data-quality findings come
out as one JSON object per line; ``LOG_FORMAT=text`` switches to plain lines
for local runs.
"""
import logging
import os
import sys
import time

from pythonjsonlogger import jsonlogger

PACKAGE_LOGGER = "analytics_etl"
SERVICE_NAME = "analytics-etl"

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

JSON_FORMAT = "%(timestamp)s %(level)s %(logger)s %(message)s"
TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class WarehouseJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter adding timestamp, level, logger, service and call site

    Fields passed through ``extra=`` (batch_id, stage, table, ...) are kept
    as top-level keys by the base formatter.
    """

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)

        if not log_record.get("timestamp"):
            log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["service"] = SERVICE_NAME
        log_record["call_site"] = f"{record.module}:{record.funcName}"


def build_formatter(format_type: str) -> logging.Formatter:
    if format_type == "text":
        return logging.Formatter(fmt=TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    return WarehouseJsonFormatter(fmt=JSON_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S")


def configure_logging(
    level: str | None = None,
    format_type: str | None = None,
    stream=None,
) -> logging.Logger:
    """
    Configure the package logger, replacing any handler set up earlier

    Args:
        level: Log level (defaults to LOG_LEVEL env var, then INFO)
        format_type: "json" or "text" (defaults to LOG_FORMAT env var, then json)
        stream: Output stream (defaults to stderr)

    Returns:
        The package logger
    """
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    format_type = (format_type or os.getenv("LOG_FORMAT", "json")).lower()

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(LOG_LEVELS.get(level_name, logging.INFO))
    package_logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(build_formatter(format_type))
    package_logger.addHandler(handler)
    package_logger.propagate = False

    return package_logger


def get_logger(name: str = PACKAGE_LOGGER) -> logging.Logger:
    """
    Logger under the package hierarchy; configures the package logger on first use

    Args:
        name: Module name, usually ``__name__``

    Returns:
        Logger instance
    """
    if not logging.getLogger(PACKAGE_LOGGER).handlers:
        configure_logging()

    if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + "."):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)


class log_operation:
    """
    Context manager logging the start, outcome and duration of an operation

    Rows handled inside the block can be reported with ``add_rows`` and end
    up in the completion record.

    Usage:
        with log_operation("DWS stage", logger=logger, batch_id="BATCH_...") as op:
            op.add_rows(store.write_batch(table, rows))
    """

    def __init__(self, operation_name: str, logger: logging.Logger | None = None, **extra_fields):
        self.operation_name = operation_name
        self.logger = logger or get_logger()
        self.extra_fields = extra_fields
        self.row_count = 0
        self.duration = 0.0
        self._started = 0.0

    def add_rows(self, count: int) -> None:
        self.row_count += count

    def __enter__(self):
        self._started = time.perf_counter()
        self.logger.info(
            f"Starting: {self.operation_name}",
            extra={"operation": self.operation_name, **self.extra_fields},
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.perf_counter() - self._started
        fields = {
            "operation": self.operation_name,
            "duration_seconds": round(self.duration, 3),
            "row_count": self.row_count,
            **self.extra_fields,
        }

        if exc_type is None:
            self.logger.info(f"Completed: {self.operation_name}", extra={**fields, "status": "success"})
        else:
            self.logger.error(
                f"Failed: {self.operation_name}",
                extra={
                    **fields,
                    "status": "error",
                    "error_type": exc_type.__name__,
                    "error_message": str(exc_val),
                },
                exc_info=True,
            )
        return False
