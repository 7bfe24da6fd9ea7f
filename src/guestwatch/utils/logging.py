"""Logging setup for the CLI and the daemon."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

from guestwatch.config.logging import LoggingSettings

__all__ = ["json_formatter", "setup_file_logging", "setup_logging"]

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def json_formatter() -> logging.Formatter:
    """Render stdlib log records as one JSON object per line."""
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
        ],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.EventRenamer("message"),
            structlog.processors.JSONRenderer(),
        ],
    )


def _quiet_third_party() -> None:
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def setup_logging(verbose: bool = False) -> None:
    """
    Configure logging for CLI.

    Args:
        verbose: If True, enable DEBUG level logging
    """
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format=TEXT_FORMAT,
        datefmt=DATE_FORMAT,
    )
    _quiet_third_party()


def setup_file_logging(settings: LoggingSettings, verbose: bool = False) -> None:
    """
    Configure rotating file logging for the daemon.

    Args:
        settings: Log file paths, format and rotation
        verbose: Force DEBUG level and also log to stderr
    """
    level = logging.DEBUG if verbose else getattr(logging, settings.level.upper())
    formatter: logging.Formatter
    if settings.format == "json":
        formatter = json_formatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT, DATE_FORMAT)

    handlers: list[logging.Handler] = []
    for path, handler_level in (
        (settings.daemon, level),
        (settings.daemon_error, logging.WARNING),
    ):
        log_file = Path(path).expanduser()
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_file,
            maxBytes=settings.max_size_mb * 1024 * 1024,
            backupCount=settings.backup_count,
        )
        handler.setLevel(handler_level)
        handler.setFormatter(formatter)
        handlers.append(handler)

    if verbose:
        stream = logging.StreamHandler()
        stream.setFormatter(formatter)
        handlers.append(stream)

    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)

    _quiet_third_party()
