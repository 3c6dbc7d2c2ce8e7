"""Structured logging utilities for the edge server.

Every record is a single JSON object on stdout. The event text is emitted under
``message`` (rather than structlog's ``event``) so the lines are understood by
Stackdriver / Cloud Logging without an agent-side rewrite.
"""

import logging
import sys
import time
from contextvars import ContextVar
from typing import Any, Optional

import structlog
from structlog.types import EventDict, Processor

# Context variable for request tracking
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def add_request_id(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add request_id to log context if available."""
    request_id = request_id_var.get()
    if request_id:
        event_dict.setdefault("request_id", request_id)
    return event_dict


def add_timestamp(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add an epoch-millisecond timestamp unless the caller supplied one."""
    event_dict.setdefault("timestamp", int(time.time() * 1000))
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True,
    cache_logger_on_first_use: bool = True,
) -> None:
    """Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, output JSON format. If False, use console format.
        cache_logger_on_first_use: Passed through to structlog. Tests disable it
            so ``structlog.testing.capture_logs`` sees module-level loggers.
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_request_id,
        add_timestamp,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors.extend([
            structlog.processors.EventRenamer("message"),
            structlog.processors.JSONRenderer(),
        ])
    else:
        # Pretty console output for development
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=cache_logger_on_first_use,
    )


def get_logger(name: str = "edge") -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance.

    Args:
        name: Logger name (typically module name)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


class PerformanceLogger:
    """Context manager for tracking operation performance.

    Failures are logged at error level, except the exception types listed in
    ``expected``, which are logged at debug as stopped. Completions slower than
    ``slow_ms`` are logged at warning, everything else at debug.
    """

    def __init__(
        self,
        operation: str,
        logger: Optional[structlog.stdlib.BoundLogger] = None,
        slow_ms: float = 50.0,
        expected: tuple[type[BaseException], ...] = (),
        **fields: Any,
    ):
        self.operation = operation
        self.logger = logger or get_logger()
        self.slow_ms = slow_ms
        self.expected = expected
        self.fields = fields
        self.start_time: float = 0
        self.end_time: float = 0

    def __enter__(self) -> "PerformanceLogger":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.end_time = time.perf_counter()
        duration_ms = (self.end_time - self.start_time) * 1000

        if exc_type is not None and issubclass(exc_type, self.expected):
            self.logger.debug(
                f"{self.operation} stopped",
                operation=self.operation,
                duration_ms=duration_ms,
                reason=str(exc_val),
                **self.fields,
            )
        elif exc_type is not None:
            self.logger.error(
                f"{self.operation} failed",
                operation=self.operation,
                duration_ms=duration_ms,
                error=str(exc_val),
                error_type=exc_type.__name__,
                **self.fields,
            )
        else:
            log_method = self.logger.warning if duration_ms > self.slow_ms else self.logger.debug
            log_method(
                f"{self.operation} completed",
                operation=self.operation,
                duration_ms=duration_ms,
                **self.fields,
            )

    @property
    def duration_ms(self) -> float:
        """Get duration in milliseconds."""
        if self.end_time == 0:
            return (time.perf_counter() - self.start_time) * 1000
        return (self.end_time - self.start_time) * 1000


def set_request_id(request_id: str) -> Any:
    """Set request ID in context for all subsequent logs.

    Returns the ContextVar token so the caller can restore the previous value.
    """
    return request_id_var.set(request_id)


def clear_request_id(token: Any = None) -> None:
    """Clear request ID from context (or restore it from ``token``)."""
    if token is not None:
        request_id_var.reset(token)
    else:
        request_id_var.set(None)


# Initialize logging with sensible defaults
# This will be reconfigured by main.py based on environment
configure_logging()
