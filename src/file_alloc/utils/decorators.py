"""Decorator utilities for cross-cutting concerns."""
import time
import logging
import functools
import asyncio
from typing import Any, Callable, Optional, TypeVar, cast

logger = logging.getLogger(__name__)

F = TypeVar('F', bound=Callable[..., Any])


def async_log_execution_time(func: F) -> F:
    """Log how long an async call took, and whether it failed.

    Used on the reconciliation passes, which can run for a long time on a
    large bucket.
    """
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        start_time = time.perf_counter()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            duration = time.perf_counter() - start_time
            logger.error(f"{func.__qualname__} failed after {duration:.2f}s: {str(e)}")
            raise
        duration = time.perf_counter() - start_time
        logger.info(f"{func.__qualname__} completed in {duration:.2f}s")
        return result
    return cast(F, wrapper)


def async_retry(max_attempts: int = 3, delay: float = 1.0, backoff: float = 2.0,
                exceptions: tuple = (Exception,), logger_name: Optional[str] = None):
    """Retry an async function with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts, the first one included
        delay: Initial delay between attempts in seconds
        backoff: Multiplier applied to the delay after each failure
        exceptions: Exception types that trigger a retry
        logger_name: Optional logger name (defaults to module logger)
    """
    retry_logger = logging.getLogger(logger_name) if logger_name else logger

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            current_delay = delay
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_attempts:
                        retry_logger.error(f"All {max_attempts} attempts failed for {func.__qualname__}: {str(e)}")
                        raise
                    retry_logger.warning(
                        f"Attempt {attempt}/{max_attempts} for {func.__qualname__} failed: {str(e)}. "
                        f"Retrying in {current_delay:.2f}s"
                    )
                    await asyncio.sleep(current_delay)
                    current_delay *= backoff

        return cast(F, wrapper)

    return decorator
