"""Structured logging configuration."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pythonjsonlogger import jsonlogger

from pricescan.config import settings

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Context keys bound by get_logger() that the text format appends
CONTEXT_KEYS = ("job_id", "source", "supplier_id")


class ScanJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter carrying the scan context bound to a record."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.fromtimestamp(record.created, timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        if record.levelno >= logging.WARNING:
            log_record["source"] = f"{record.filename}:{record.lineno}"


class ContextTextFormatter(logging.Formatter):
    """Plain formatter that appends bound context as key=value pairs."""

    def format(self, record):
        line = super().format(record)
        context = [f"{key}={getattr(record, key)}" for key in CONTEXT_KEYS if getattr(record, key, None) is not None]
        if context:
            line = f"{line} [{' '.join(context)}]"
        return line


def build_formatter(log_format: str) -> logging.Formatter:
    if log_format.lower() == "json":
        return ScanJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
    return ContextTextFormatter(TEXT_FORMAT)


def setup_logging(log_dir: Optional[str] = None) -> logging.Logger:
    """Configure the root logger.

    Console output follows ``settings.log_format``. When a log directory is
    configured, every record is also written there as JSON, with errors
    copied to a separate file.

    Args:
        log_dir: Directory for log files, overriding ``settings.log_dir``.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(build_formatter(settings.log_format))
    root_logger.addHandler(console_handler)

    directory = log_dir or settings.log_dir
    if directory:
        path = Path(directory)
        path.mkdir(parents=True, exist_ok=True)
        json_formatter = build_formatter("json")

        file_handler = logging.FileHandler(path / "app.log")
        file_handler.setFormatter(json_formatter)
        root_logger.addHandler(file_handler)

        error_handler = logging.FileHandler(path / "error.log")
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(json_formatter)
        root_logger.addHandler(error_handler)

    # httpx logs every request at INFO; scans make thousands of them
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    return root_logger


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that merges bound context into every record."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_logger(name: str, **context) -> ContextLogger:
    """
    Get a logger with bound context fields.

    Args:
        name: Logger name (usually __name__)
        **context: Context fields, e.g. job_id='ab12' or source='Bol.com'
    """
    return ContextLogger(logging.getLogger(name), context)
