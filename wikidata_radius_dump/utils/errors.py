"""
Custom exception classes and error handling utilities.
"""

import asyncio
import functools
import traceback
from enum import Enum
from typing import Optional, Dict, Any


class RadiusDumpError(Exception):
    """Base exception for all radius dump errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class TransportErrorKind(Enum):
    """Failure categories surfaced by the query transport."""
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    NETWORK_ERROR = "network_error"


class TransportError(RadiusDumpError):
    """Exception raised when a query endpoint request fails."""

    def __init__(
        self,
        kind: TransportErrorKind,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.kind = kind


class SearchApiError(RadiusDumpError):
    """Exception raised when the search API request fails."""
    pass


class ValidationError(RadiusDumpError):
    """Exception raised for invalid identifiers, language tags or settings."""
    pass


class ConfigurationError(RadiusDumpError):
    """Exception raised for configuration-related issues."""
    pass


class JobAbortedError(RadiusDumpError):
    """Exception raised when a crawl job is aborted by its owner."""

    def __init__(self, message: str = "Job aborted", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class SerializationError(RadiusDumpError):
    """Exception raised when the Turtle conversion cannot complete."""
    pass


def handle_error(
    error: Exception,
    logger,
    context: Optional[Dict[str, Any]] = None,
    reraise: bool = True
) -> None:
    """
    Handle and log errors with context information.

    Args:
        error: The exception that occurred
        logger: Logger instance to use for logging
        context: Additional context information
        reraise: Whether to reraise the exception after logging
    """
    error_context = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "traceback": traceback.format_exc(),
        **(context or {})
    }

    if isinstance(error, RadiusDumpError):
        error_context.update(error.details)

    logger.error("Error occurred: %s", error_context.pop("error_message"), extra={"context": error_context})

    if reraise:
        raise error


def async_retry_on_error(
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff_factor: float = 2.0,
    exceptions: tuple = (Exception,),
    sleep=None
):
    """
    Decorator for retrying coroutine functions on specific exceptions.

    Args:
        max_attempts: Maximum number of attempts
        delay: Initial delay between retries in seconds
        backoff_factor: Factor to multiply delay by after each attempt
        exceptions: Tuple of exception types to retry on
        sleep: Optional awaitable sleep function (defaults to asyncio.sleep)
    """
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            current_delay = delay
            sleeper = sleep or asyncio.sleep

            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)
                except exceptions:
                    if attempt >= max_attempts - 1:
                        raise
                    await sleeper(current_delay)
                    current_delay *= backoff_factor

        return wrapper
    return decorator
