"""Retry utilities with exponential backoff for transport collaborators."""

import time
from functools import wraps
from typing import Callable, Tuple, Type

import structlog
from requests.exceptions import HTTPError

log = structlog.stdlib.get_logger()

# Server-side statuses worth retrying; other 4xx responses will not change on retry
TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


def is_transient(error: Exception) -> bool:
    """Return True if an error is worth retrying."""
    if isinstance(error, HTTPError) and error.response is not None:
        return error.response.status_code in TRANSIENT_STATUS_CODES
    return True


def exponential_backoff_retry(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    retry_if: Callable[[Exception], bool] | None = None,
) -> Callable:
    """
    Decorator that retries a function with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        exceptions: Tuple of exception types to catch and retry
        retry_if: Optional predicate; errors it rejects are raised immediately

    Returns:
        Decorated function with retry logic
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if retry_if is not None and not retry_if(e):
                        log.warning("error_not_retryable", function=func.__name__, error=str(e))
                        raise

                    if attempt == max_retries:
                        log.error(
                            "max_retries_reached",
                            function=func.__name__,
                            max_retries=max_retries,
                            error=str(e),
                        )
                        raise

                    delay = min(base_delay * (2**attempt), max_delay)

                    log.warning(
                        "retrying_after_error",
                        function=func.__name__,
                        attempt=attempt + 1,
                        max_retries=max_retries,
                        delay_seconds=delay,
                        error=str(e),
                    )

                    time.sleep(delay)

        return wrapper

    return decorator
