"""
Structured logging configuration for cargo-lockdiff.

Emits machine-readable JSON log lines on stderr; stdout carries the report.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .error_handling import get_error_handler

_RESERVED_ATTRS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "getMessage",
    "exc_info",
    "exc_text",
    "stack_info",
    "taskName",
}


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class EventLogger:
    """Structured logger for comparison events."""

    def __init__(self, name: str = "cargo_lockdiff"):
        self.logger = logging.getLogger(f"cargo_lockdiff.{name}")
        self._setup_logger()
        self.run_context: Dict[str, Any] = {}

    def _setup_logger(self) -> None:
        """Setup logger with structured formatting."""
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(StructuredFormatter())
            self.logger.addHandler(handler)
            self.logger.setLevel(logging.WARNING)
            self.logger.propagate = False

    def use_plain_format(self) -> None:
        for handler in self.logger.handlers:
            handler.setFormatter(
                logging.Formatter("%(levelname)s %(name)s: %(message)s %(event)s")
            )

    def set_run_context(
        self,
        revision: Optional[str] = None,
        lockfile_path: Optional[str] = None,
    ) -> None:
        """Set comparison context attached to every event."""
        self.run_context = {}
        if revision:
            self.run_context["revision"] = revision
        if lockfile_path:
            self.run_context["lockfile_path"] = lockfile_path

    def clear_run_context(self) -> None:
        self.run_context.clear()

    def _log(self, level: str, event_type: str, **kwargs) -> None:
        log_data = {"event": event_type, **self.run_context, **kwargs}
        getattr(self.logger, level.lower())(event_type, extra=log_data)

    def info(self, event_type: str, **kwargs) -> None:
        self._log("info", event_type, **kwargs)

    def warning(self, event_type: str, **kwargs) -> None:
        self._log("warning", event_type, **kwargs)

    def error(self, event_type: str, **kwargs) -> None:
        self._log("error", event_type, **kwargs)

    def debug(self, event_type: str, **kwargs) -> None:
        self._log("debug", event_type, **kwargs)


# Global logger instances
_diff_logger = EventLogger("diff")
_registry_logger = EventLogger("registry")
_git_logger = EventLogger("git")

_ALL_LOGGERS = (_diff_logger, _registry_logger, _git_logger)


def get_diff_logger() -> EventLogger:
    """Get comparison operations logger."""
    return _diff_logger


def get_registry_logger() -> EventLogger:
    """Get package resolution logger."""
    return _registry_logger


def get_git_logger() -> EventLogger:
    """Get revision access logger."""
    return _git_logger


def log_diff_start(old_label: str, new_label: str, lockfile_path: str) -> None:
    """Log the start of a comparison."""
    for logger in _ALL_LOGGERS:
        logger.set_run_context(f"{old_label}..{new_label}", lockfile_path)
    _diff_logger.info("diff_started", old=old_label, new=new_label)


def log_diff_complete(
    old_records: int,
    new_records: int,
    added: int,
    removed: int,
    updated: int,
    duration_ms: int,
) -> None:
    """Log diff completion with operation counts."""
    _diff_logger.info(
        "diff_completed",
        old_records=old_records,
        new_records=new_records,
        added=added,
        removed=removed,
        updated=updated,
        duration_ms=duration_ms,
    )


def log_revision_resolved(expression: str, commit: str) -> None:
    _git_logger.debug("revision_resolved", expression=expression, commit=commit)


def log_resolution(
    package_name: str,
    version: str,
    origin: str,
    success: bool,
    reason: Optional[str] = None,
) -> None:
    """Log the outcome of mapping a record to package data."""
    log_data = {
        "package_name": package_name,
        "version": version,
        "origin": origin,
    }
    if reason:
        log_data["reason"] = reason

    if success:
        _registry_logger.debug("package_resolved", **log_data)
    else:
        _registry_logger.warning("package_resolution_failed", **log_data)


def clear_run_context() -> None:
    """Clear context on every logger."""
    for logger in _ALL_LOGGERS:
        logger.clear_run_context()


def configure_logging(log_level: str = "WARNING", enable_json: bool = True) -> None:
    """Configure logging for the application."""
    level = getattr(logging, log_level.upper(), logging.WARNING)

    for logger in _ALL_LOGGERS:
        logger.logger.setLevel(level)
        if not enable_json:
            logger.use_plain_format()

    get_error_handler().set_level(level)
