"""Logging setup for the benchmark worker.

Progress goes to stdout as plain lines; warnings and errors carry their level
so they stand out in a scrolling console. An optional rotating log file can
be written as JSON lines, in which case per-batch fields passed through
``extra=`` (``images``, ``elapsed``, ``total_images``, ``job_id``) land in the
record as top-level keys.
"""

from __future__ import annotations

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Mapping

LOGGER_NAME = "sdnext_benchmark"
LOG_FILENAME = "sdnext-benchmark.log"
BENCHMARK_FIELDS = ("state", "job_id", "images", "total_images", "elapsed")


class ProgressFormatter(logging.Formatter):
    """``HH:MM:SS message`` for progress, ``HH:MM:SS LEVEL message`` otherwise."""

    COLORS = {
        logging.DEBUG: "\033[2m",  # dim
        logging.WARNING: "\033[33m",  # yellow
        logging.ERROR: "\033[31m",  # red
        logging.CRITICAL: "\033[1;31m",  # bold red
    }
    RESET = "\033[0m"

    def __init__(self, *, use_color: bool) -> None:
        super().__init__(datefmt="%H:%M:%S")
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        timestamp = self.formatTime(record, self.datefmt)
        message = record.getMessage()
        if record.levelno == logging.INFO:
            line = f"{timestamp} {message}"
        else:
            line = f"{timestamp} {record.levelname} {message}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        color = self.COLORS.get(record.levelno) if self.use_color else None
        return f"{color}{line}{self.RESET}" if color else line


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "message": record.getMessage(),
        }
        for key in BENCHMARK_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value if isinstance(value, (int, float)) else str(value)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(config: Mapping[str, object]) -> logging.Logger:
    """Configure console and file loggers from the ``logging`` config section."""

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    # Remove previous handlers to avoid duplicates in tests.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.addHandler(
        _console_handler(
            _coerce_level(config.get("console_level")),
            use_color=bool(config.get("color", True)) and sys.stdout.isatty(),
        )
    )
    log_dir = config.get("log_dir")
    if log_dir:
        logger.addHandler(
            _file_handler(
                Path(str(log_dir)),
                _coerce_level(config.get("file_level")),
                json_logs=bool(config.get("json_logs")),
            )
        )
    return logger


def _console_handler(level: int, *, use_color: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(ProgressFormatter(use_color=use_color))
    return handler


def _file_handler(directory: Path, level: int, *, json_logs: bool) -> logging.Handler:
    directory.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        directory / LOG_FILENAME,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    handler.setLevel(level)
    if json_logs:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
    return handler


def _coerce_level(level: object) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        value = getattr(logging, level.upper(), None)
        if isinstance(value, int):
            return value
    return logging.INFO


__all__ = ["LOGGER_NAME", "ProgressFormatter", "configure_logging"]
