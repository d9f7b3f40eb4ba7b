"""Retry with exponential backoff for transient Azure CLI failures.

Usage:
    @retry_with_exponential_backoff(max_attempts=3)
    def create_nsg():
        ...

Security:
- Error text is truncated and scrubbed before it is logged
"""

import functools
import logging
import random
import re
import subprocess
import time
from collections.abc import Callable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

DEFAULT_RETRYABLE_EXCEPTIONS: tuple[type[Exception], ...] = (
    TimeoutError,
    ConnectionError,
    subprocess.TimeoutExpired,
)

_SECRET_RE = re.compile(r"(password|secret|token|key)(\s*[=:]\s*)\S+", re.IGNORECASE)


def retry_with_exponential_backoff(
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter: bool = True,
    retryable_exceptions: tuple[type[Exception], ...] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Callable[[F], F]:
    """Decorator for retrying an operation with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts
        initial_delay: Delay before the second attempt, in seconds
        max_delay: Upper bound for any single delay
        jitter: Add +/-25% random jitter to each delay
        retryable_exceptions: Exception types that trigger a retry; anything
            else propagates immediately
        sleep: Sleep function (injectable for tests)

    Returns:
        Decorated function that raises the last exception once attempts run out
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    if retryable_exceptions is None:
        retryable_exceptions = DEFAULT_RETRYABLE_EXCEPTIONS

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            delay = initial_delay
            for attempt in range(1, max_attempts + 1):
                try:
                    result = func(*args, **kwargs)
                except retryable_exceptions as e:
                    if attempt >= max_attempts:
                        logger.error(f"{func.__name__} failed after {max_attempts} attempts")
                        raise
                    actual_delay = delay
                    if jitter:
                        actual_delay += random.uniform(-delay * 0.25, delay * 0.25)
                    actual_delay = min(max(actual_delay, 0.0), max_delay)
                    logger.warning(
                        f"{func.__name__} failed on attempt {attempt}/{max_attempts}, "
                        f"retrying in {actual_delay:.2f}s: {_safe_error_message(e)}"
                    )
                    sleep(actual_delay)
                    delay *= 2
                else:
                    if attempt > 1:
                        logger.info(f"{func.__name__} succeeded on attempt {attempt}/{max_attempts}")
                    return result
            raise RuntimeError(f"{func.__name__} failed with unknown error")

        return wrapper  # type: ignore[return-value]

    return decorator


def _safe_error_message(exception: Exception) -> str:
    """Short, scrubbed error text suitable for logs."""
    if isinstance(exception, subprocess.CalledProcessError) and exception.stderr:
        text = str(exception.stderr).strip()
    else:
        text = str(exception)
    text = _SECRET_RE.sub(r"\1\2***", text)
    if len(text) > 200:
        text = text[:200] + "..."
    return text


__all__ = ["DEFAULT_RETRYABLE_EXCEPTIONS", "retry_with_exponential_backoff"]
