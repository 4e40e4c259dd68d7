"""
Centralized logging and error handling utilities for the chat relay.

This module provides decorators and helper functions to standardize logging
and error reporting across the relay, so that upstream calls, stream decoding
and the HTTP boundary all report failures the same way.

Features:
- Structured logging with contextual information
- Error classification into HTTP status codes for the request boundary
- Performance timing for upstream operations
"""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, ParamSpec, TypeVar

import structlog
from pydantic import ValidationError

from .upstream.exceptions import RelayError

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(colors=True),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

# Type variables for generic decorators
P = ParamSpec("P")
T = TypeVar("T")
AsyncCallable = Callable[P, Awaitable[T]]

HTTP_BAD_REQUEST = 400
HTTP_INTERNAL_ERROR = 500
HTTP_GATEWAY_TIMEOUT = 504

logger = structlog.get_logger(__name__)


def configure_logging(level: str = "INFO") -> None:
    """Route stdlib logging (and therefore structlog) at the given level."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
    )


class RelayErrorHandler:
    """Centralized error classification for the HTTP boundary."""

    @staticmethod
    def classify_error(error: Exception) -> tuple[int, str]:
        """
        Classify an error and return the HTTP status and error category.

        Args:
            error: The exception to classify

        Returns:
            Tuple of (http_status, error_category)
        """
        if isinstance(error, RelayError):
            return error.status_code, error.category
        if isinstance(error, ValidationError):
            return HTTP_BAD_REQUEST, "validation_error"
        if isinstance(error, TimeoutError):
            return HTTP_GATEWAY_TIMEOUT, "timeout_error"
        if isinstance(error, ConnectionError | OSError):
            return HTTP_INTERNAL_ERROR, "connection_error"
        return HTTP_INTERNAL_ERROR, "unknown_error"

    @staticmethod
    def error_body(
        error: Exception,
        operation: str,
        context: dict[str, Any] | None = None,
    ) -> tuple[int, dict[str, Any]]:
        """
        Build the status code and JSON body for a failed request.

        Args:
            error: Original exception
            operation: Description of the operation that failed
            context: Additional context for logging

        Returns:
            Tuple of (http_status, {"success": False, "message": ...})
        """
        status, category = RelayErrorHandler.classify_error(error)

        if isinstance(error, RelayError):
            message = error.message
        elif category == "timeout_error":
            message = "Request timeout"
        else:
            message = "Chat processing failed"

        logger.error(
            "Operation failed",
            operation=operation,
            error_type=type(error).__name__,
            error_category=category,
            status_code=status,
            error_message=str(error),
            **(context or {}),
        )

        return status, {"success": False, "message": message}


def log_operation(
    operation: str,
    *,
    log_args: bool = False,
    log_result: bool = False,
    log_timing: bool = True,
    context: dict[str, Any] | None = None,
) -> Callable[[AsyncCallable[P, T]], AsyncCallable[P, T]]:
    """
    Decorator for logging async operations with structured context.

    Args:
        operation: Description of the operation being performed
        log_args: Whether to log function arguments
        log_result: Whether to log function result
        log_timing: Whether to log execution timing
        context: Additional context to include in logs

    Returns:
        Decorated function with logging
    """
    def decorator(func: AsyncCallable[P, T]) -> AsyncCallable[P, T]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            operation_logger = logger.bind(
                operation=operation,
                function=func.__name__,
                **(context or {}),
            )

            log_data = {}
            if log_args:
                log_data.update({
                    "args": args[1:] if args else [],  # Skip 'self' if present
                    "kwargs": kwargs,
                })

            operation_logger.debug("Operation started", **log_data)

            start_time = time.perf_counter() if log_timing else None

            try:
                result = await func(*args, **kwargs)

                end_log_data: dict[str, Any] = {}
                if log_timing and start_time is not None:
                    duration = round((time.perf_counter() - start_time) * 1000, 2)
                    end_log_data["duration_ms"] = duration
                if log_result:
                    end_log_data["result"] = result

                operation_logger.info(
                    "Operation completed successfully", **end_log_data
                )
                return result

            except Exception as e:
                error_log_data: dict[str, Any] = {
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                }
                if log_timing and start_time is not None:
                    duration = round((time.perf_counter() - start_time) * 1000, 2)
                    error_log_data["duration_ms"] = duration

                operation_logger.error("Operation failed", **error_log_data)
                raise

        return wrapper
    return decorator


@asynccontextmanager
async def operation_context(
    operation: str,
    *,
    context: dict[str, Any] | None = None,
    log_timing: bool = True,
):
    """
    Async context manager for operation logging.

    Args:
        operation: Description of the operation
        context: Additional context for logging
        log_timing: Whether to log operation timing

    Yields:
        Bound logger for the operation
    """
    operation_logger = logger.bind(
        operation=operation,
        **(context or {}),
    )

    operation_logger.debug("Operation started")
    start_time = time.perf_counter() if log_timing else None

    try:
        yield operation_logger

        log_data: dict[str, Any] = {}
        if log_timing and start_time is not None:
            duration = round((time.perf_counter() - start_time) * 1000, 2)
            log_data["duration_ms"] = duration

        operation_logger.info("Operation completed successfully", **log_data)

    except Exception as e:
        error_log_data: dict[str, Any] = {
            "error_type": type(e).__name__,
            "error_message": str(e),
        }
        if log_timing and start_time is not None:
            duration = round((time.perf_counter() - start_time) * 1000, 2)
            error_log_data["duration_ms"] = duration

        operation_logger.error("Operation failed", **error_log_data)
        raise
