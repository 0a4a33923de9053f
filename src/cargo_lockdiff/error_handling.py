"""
Error taxonomy and centralized error handling for cargo-lockdiff.

Defines the exceptions raised while reading and comparing lockfiles, plus a
structured error handler with callbacks and credential-safe logging.
"""

import logging
import re
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional


class LockDiffError(Exception):
    """Base class for all cargo-lockdiff failures.

    Carries optional context naming which side of the comparison
    (``old``/``new``), which path and which revision failed.
    """

    def __init__(
        self,
        message: str,
        *,
        side: Optional[str] = None,
        path: Optional[str] = None,
        revision: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.side = side
        self.path = path
        self.revision = revision

    def with_context(
        self,
        side: Optional[str] = None,
        path: Optional[str] = None,
        revision: Optional[str] = None,
    ) -> "LockDiffError":
        """Return a copy of this error of the same type with context filled in."""
        return type(self)(
            self.message,
            side=side or self.side,
            path=path or self.path,
            revision=revision or self.revision,
        )

    def __str__(self) -> str:
        location = []
        if self.side:
            location.append(f"{self.side} version")
        if self.path:
            location.append(self.path)
        if self.revision:
            location.append(f"at {self.revision}")
        if location:
            return f"{' '.join(location)}: {self.message}"
        return self.message


class NotFoundError(LockDiffError):
    """A path does not exist at a revision, or on disk."""


class NotTextualError(LockDiffError):
    """File content is not valid UTF-8 text."""


class ParseError(LockDiffError, ValueError):
    """Lockfile content is malformed."""


class RevisionError(LockDiffError):
    """A revision expression does not resolve, or a commit has no parent."""


class ResolutionError(LockDiffError):
    """A dependency record cannot be mapped to concrete package data."""


class ErrorLevel(Enum):
    WARNING = "WARNING"
    ERROR = "ERROR"


class ErrorCategory(Enum):
    """Which stage of a comparison an error came from."""

    PARSING = "PARSING"
    REVISION = "REVISION"
    RESOLUTION = "RESOLUTION"
    NETWORK = "NETWORK"
    FILESYSTEM = "FILESYSTEM"
    CONFIGURATION = "CONFIGURATION"


@dataclass
class ErrorContext:
    """A handled error, as passed to callbacks."""

    level: ErrorLevel
    category: ErrorCategory
    message: str
    module: str
    function: str
    details: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[Exception] = None


# Git and registry URLs in lockfiles may embed credentials
_SENSITIVE_PATTERNS = [
    (re.compile(r"((?:https?|ssh)://[^@\s/]+:)[^@\s]+@", re.IGNORECASE), r"\1[REDACTED]@"),
    (
        re.compile(r'token["\s]*[:=]["\s]*([a-zA-Z0-9_\-+=/.]{8,})', re.IGNORECASE),
        'token="[REDACTED]"',
    ),
    (re.compile(r"Authorization:\s*\w+\s+([^\s]+)", re.IGNORECASE), "Authorization: [REDACTED]"),
]


def sanitize_message(message: str) -> str:
    """Strip credentials from a message before it is logged or displayed."""
    for pattern, replacement in _SENSITIVE_PATTERNS:
        message = pattern.sub(replacement, message)
    return message


class SecureLogger:
    """Writes handled errors to stderr with credentials masked.

    Lines look like ``WARNING [NETWORK] registry_clients._get: message (url=...)``.
    """

    def __init__(self, name: str, level: int = logging.WARNING):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)

        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
            self.logger.addHandler(handler)
            self.logger.propagate = False

    def log_error_context(self, context: ErrorContext):
        line = (
            f"[{context.category.value}] {context.module}.{context.function}: "
            f"{sanitize_message(context.message)}"
        )
        details = ", ".join(
            f"{key}={sanitize_message(str(value))}" for key, value in sorted(context.details.items())
        )
        if details:
            line += f" ({details})"
        if context.exception is not None and not isinstance(context.exception, LockDiffError):
            line += f" [{type(context.exception).__name__}]"

        self.logger.log(getattr(logging, context.level.value), line)


ErrorCallback = Callable[[ErrorContext], None]


class ErrorHandler:
    """
    Central sink for errors raised while comparing lockfiles.

    Keeps per-category counts, logs through a SecureLogger and notifies any
    registered callbacks. A LockDiffError passed as ``exception`` contributes
    its side, path and revision to the logged details.
    """

    def __init__(self, logger_name: str = "cargo_lockdiff", log_level: int = logging.WARNING):
        self.logger = SecureLogger(logger_name, log_level)
        self.error_callbacks: Dict[ErrorCategory, List[ErrorCallback]] = {}
        self.global_callbacks: List[ErrorCallback] = []
        self.error_stats: Dict[str, int] = {}

    def set_level(self, level: int):
        self.logger.logger.setLevel(level)

    def register_callback(
        self, callback: ErrorCallback, category: Optional[ErrorCategory] = None
    ):
        """
        Register error callback.

        Args:
            callback: Function to call on errors
            category: Error category to filter, None for all errors
        """
        if category is None:
            self.global_callbacks.append(callback)
        else:
            self.error_callbacks.setdefault(category, []).append(callback)

    def handle_error(
        self,
        level: ErrorLevel,
        category: ErrorCategory,
        message: str,
        module: str,
        function: str,
        exception: Optional[Exception] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> ErrorContext:
        details = dict(details or {})
        if isinstance(exception, LockDiffError):
            for key in ("side", "path", "revision"):
                value = getattr(exception, key)
                if value is not None:
                    details.setdefault(key, value)

        context = ErrorContext(level, category, message, module, function, details, exception)

        stat_key = f"{category.value}_{level.value}"
        self.error_stats[stat_key] = self.error_stats.get(stat_key, 0) + 1

        self.logger.log_error_context(context)

        callbacks = self.error_callbacks.get(category, []) + self.global_callbacks
        for callback in callbacks:
            try:
                callback(context)
            except Exception as cb_error:
                # A failing callback must not mask the original error
                self.logger.logger.error(f"Error in callback: {cb_error}")

        return context

    def warning(self, category: ErrorCategory, message: str, module: str, function: str, **kwargs) -> ErrorContext:
        return self.handle_error(ErrorLevel.WARNING, category, message, module, function, **kwargs)

    def error(self, category: ErrorCategory, message: str, module: str, function: str, **kwargs) -> ErrorContext:
        return self.handle_error(ErrorLevel.ERROR, category, message, module, function, **kwargs)

    def get_error_stats(self) -> Dict[str, int]:
        return self.error_stats.copy()

    def reset_stats(self):
        self.error_stats.clear()


_global_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """Return the process-wide error handler, creating it on first use."""
    global _global_error_handler
    if _global_error_handler is None:
        _global_error_handler = ErrorHandler()
    return _global_error_handler


def _details(**values: Optional[Any]) -> Dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


def log_parsing_error(
    message: str,
    module: str,
    function: str,
    file_path: Optional[str] = None,
    revision: Optional[str] = None,
    exception: Optional[Exception] = None,
):
    """Record a Cargo.lock that could not be parsed."""
    get_error_handler().error(
        ErrorCategory.PARSING,
        message,
        module,
        function,
        details=_details(file_path=file_path, revision=revision),
        exception=exception,
    )


def log_network_error(
    message: str,
    module: str,
    function: str,
    url: Optional[str] = None,
    status_code: Optional[int] = None,
    exception: Optional[Exception] = None,
):
    """
    Record a failed registry request.

    Args:
        message: Error message
        module: Module name
        function: Function name
        url: URL that failed (will be sanitized)
        status_code: HTTP status code, when the server answered
        exception: Optional exception
    """
    get_error_handler().warning(
        ErrorCategory.NETWORK,
        message,
        module,
        function,
        details=_details(url=url, status_code=status_code),
        exception=exception,
    )


def log_resolution_error(
    message: str,
    module: str,
    function: str,
    package: Optional[str] = None,
    source: Optional[str] = None,
    exception: Optional[Exception] = None,
):
    """
    Record a package that could not be resolved to sources.

    Resolution failures only degrade enrichment, so they are logged as warnings.
    """
    get_error_handler().warning(
        ErrorCategory.RESOLUTION,
        message,
        module,
        function,
        details=_details(package=package, source=source),
        exception=exception,
    )
