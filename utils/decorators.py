"""
Reusable decorators for the data layer.

- `retry_on_rate_limit`: capped exponential backoff on HTTP 429 only.
- `log_operation`: debug-level timing of service calls.
"""

import asyncio
import logging
import time
from functools import wraps
from typing import Callable

from config.settings import MAX_RETRY_ATTEMPTS, RETRY_BASE_DELAY, RETRY_MAX_DELAY
from utils.errors import RateLimitedError

logger = logging.getLogger("pokedex.decorators")


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """`min(base_delay * 2**attempt, max_delay)`."""
    return min(base_delay * (2**attempt), max_delay)


def retry_on_rate_limit(
    max_retries: int = MAX_RETRY_ATTEMPTS,
    base_delay: float = RETRY_BASE_DELAY,
    max_delay: float = RETRY_MAX_DELAY,
):
    """
    Retry an async function when it raises `RateLimitedError`.

    The delay is `min(base_delay * 2**attempt, max_delay)`. A `Retry-After`
    hint from the server replaces the computed delay but is still capped at
    `max_delay`. No other exception is retried.

    Args:
        max_retries: Total attempts before giving up (including the first).
        base_delay: Initial delay in seconds.
        max_delay: Upper bound on any single delay.

    Returns:
        Decorated function wrapper.

    Raises:
        RateLimitedError: The last 429 when every attempt was rate limited.
    """

    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries):
                try:
                    return await func(*args, **kwargs)
                except RateLimitedError as e:
                    if attempt == max_retries - 1:
                        logger.error(
                            f"{func.__name__} still rate limited after {max_retries} attempts",
                            extra={"url": e.url},
                        )
                        raise

                    if e.retry_after is not None:
                        delay = min(max(e.retry_after, 0.0), max_delay)
                    else:
                        delay = backoff_delay(attempt, base_delay, max_delay)

                    logger.warning(
                        f"{func.__name__} rate limited (attempt {attempt + 1}/{max_retries}). "
                        f"Retrying in {delay:.1f}s...",
                        extra={"url": e.url},
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator


def log_operation(func: Callable):
    """
    Log the duration of an async service call at debug level.

    Failures are logged with their type and re-raised unchanged.
    """

    @wraps(func)
    async def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            logger.debug(
                f"{func.__qualname__} failed after {time.perf_counter() - start:.3f}s: "
                f"{type(e).__name__}"
            )
            raise
        logger.debug(f"{func.__qualname__} finished in {time.perf_counter() - start:.3f}s")
        return result

    return wrapper
