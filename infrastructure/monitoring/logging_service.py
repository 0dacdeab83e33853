"""
Structured logging for the messaging core.

Console output is human-readable in debug mode and one JSON object per line
otherwise; the optional rotating log file is always JSON. Anything passed
through ``extra=`` ends up under the "extra" key of the JSON record.
"""

import json
import logging
import logging.handlers
import threading
import time
import traceback
from collections import Counter
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from infrastructure.config.settings import LoggingConfig, get_config

# Attributes every LogRecord carries; everything else came in through ``extra``
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

_LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
_LOG_FILE_BACKUPS = 5


class StructuredFormatter(logging.Formatter):
    """Renders a log record as a single JSON object"""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        extra = {key: value for key, value in vars(record).items() if key not in _STANDARD_ATTRS}
        if extra:
            payload["extra"] = extra

        if record.exc_info and record.exc_info[0] is not None:
            error_type, error, tb = record.exc_info
            payload["exception"] = {
                "type": error_type.__name__,
                "message": str(error),
                "traceback": traceback.format_exception(error_type, error, tb),
            }

        return json.dumps(payload, ensure_ascii=False, default=str)


def _level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def _file_handler(settings: LoggingConfig) -> logging.Handler:
    Path(settings.log_file).parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        settings.log_file, maxBytes=_LOG_FILE_MAX_BYTES, backupCount=_LOG_FILE_BACKUPS
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(StructuredFormatter())
    return handler


def setup_logging() -> logging.Logger:
    """
    Install the console (and optional file) handlers on the root logger

    Existing root handlers are replaced, so calling this again after a
    configuration reload applies the new settings.

    Returns:
        logging.Logger: the root logger
    """
    config = get_config()
    level = _level(config.logging.level)

    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(logging.Formatter(config.logging.format) if config.debug else StructuredFormatter())
    root.addHandler(console)

    if config.logging.enable_file_logging:
        root.addHandler(_file_handler(config.logging))

    return root


def get_logger(name: str) -> logging.Logger:
    """Module logger; handlers live on the root logger"""
    return logging.getLogger(name)


@contextmanager
def log_execution_time(logger: logging.Logger, operation: str, **extra_fields):
    """
    Time the wrapped block and log how it ended

    Args:
        logger: Logger to write to
        operation: Short name of the timed operation
        **extra_fields: Added to both the success and the failure record
    """
    started = time.perf_counter()
    logger.debug(f"Starting {operation}", extra={"operation": operation, **extra_fields})
    try:
        yield
    except Exception as e:
        logger.error(f"Failed {operation}: {e}", extra={
            "operation": operation,
            "duration_seconds": round(time.perf_counter() - started, 6),
            "status": "error",
            "error_type": type(e).__name__,
            **extra_fields
        })
        raise
    else:
        logger.info(f"Completed {operation}", extra={
            "operation": operation,
            "duration_seconds": round(time.perf_counter() - started, 6),
            "status": "success",
            **extra_fields
        })


def log_conversation_event(logger: logging.Logger, event_type: str, conversation_id: str, **details):
    """
    Record a lifecycle event of a conversation (bootstrapped, message_sent, marked_read, reconciled)
    """
    logger.info(f"Conversation {conversation_id}: {event_type}", extra={
        "event_type": "conversation_event",
        "conversation_event_type": event_type,
        "conversation_id": conversation_id,
        **details
    })


class ErrorTracker:
    """
    Counts errors per (type, context) and logs each one with its traceback
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self._counts: Counter = Counter()
        self._lock = threading.Lock()

    def track_error(self, error: Exception, context: str = "", **extra_info):
        """
        Log an error and count it

        Args:
            error: The exception being reported
            context: Operation in which it happened
            **extra_info: Identifiers worth keeping next to the error
        """
        key = f"{type(error).__name__}:{context}"
        with self._lock:
            self._counts[key] += 1
            occurrences = self._counts[key]

        self.logger.error(f"Error in {context}: {error}", exc_info=error, extra={
            "event_type": "error",
            "error_type": type(error).__name__,
            "context": context,
            "occurrences": occurrences,
            **extra_info
        })

    def get_error_summary(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "total_errors": sum(self._counts.values()),
                "unique_errors": len(self._counts),
                "error_breakdown": dict(self._counts),
                "timestamp": datetime.now(timezone.utc).isoformat()
            }

    def reset(self):
        with self._lock:
            self._counts.clear()


_logging_ready = False
_error_tracker: Optional[ErrorTracker] = None


def get_error_tracker() -> ErrorTracker:
    """Process-wide error tracker; does not touch handler setup"""
    global _error_tracker
    if _error_tracker is None:
        _error_tracker = ErrorTracker(logging.getLogger("consultation.errors"))
    return _error_tracker


def initialize_logging() -> ErrorTracker:
    """
    Configure handlers once per process and return the error tracker

    Returns:
        ErrorTracker: Global error tracker instance
    """
    global _logging_ready
    if not _logging_ready:
        setup_logging()
        _logging_ready = True
    return get_error_tracker()
