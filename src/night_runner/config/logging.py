"""Logging configuration using structlog."""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path

import structlog


def daily_log_path(log_dir: Path, now: datetime | None = None) -> Path:
    """Return the append-only log file for the given day."""
    stamp = (now or datetime.now()).strftime("%Y%m%d")
    return log_dir / f"night-runner-{stamp}.log"


def configure_logging(
    debug: bool = False,
    log_format: str | None = None,
    log_dir: Path | None = None,
) -> Path | None:
    """Configure structured logging with structlog.

    Records go to stdout and, when ``log_dir`` is given, are also appended to
    a daily log file. Returns the log file path, if any.
    """
    log_level = logging.DEBUG if debug else logging.INFO
    format_value = (log_format or os.getenv("NIGHT_RUNNER_LOG_FORMAT", "console")).lower()

    shared_processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if format_value == "console":
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=False),
        ]
    else:
        processors = shared_processors + [
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    log_path = None
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = daily_log_path(log_dir)
        handlers.append(logging.FileHandler(log_path, mode="a", encoding="utf-8"))

    logging.basicConfig(
        format="%(message)s",
        level=log_level,
        handlers=handlers,
        force=True,
    )

    # Quiet noisy third-party HTTP logs
    for noisy in ("httpx", "httpcore", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return log_path
