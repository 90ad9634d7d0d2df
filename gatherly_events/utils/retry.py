"""
Retry mechanisms with exponential backoff for handling optimistic-lock conflicts.
"""

import asyncio
import logging
import random
from typing import Any, Callable, Optional
from functools import wraps
from dataclasses import dataclass

from ..config import get_settings
from ..utils.exceptions import ConcurrencyConflict

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    base_delay: float = 0.1
    max_delay: float = 2.0
    exponential_base: float = 2.0
    jitter: bool = True

    def delay_for(self, attempt: int) -> float:
        """Backoff delay to wait after the given zero-based attempt failed."""
        delay = min(
            self.base_delay * (self.exponential_base ** attempt),
            self.max_delay
        )

        # Add jitter to prevent thundering herd
        if self.jitter:
            delay = delay * (0.5 + random.random() * 0.5)

        return delay


async def retry_async(
    func: Callable,
    config: RetryConfig,
    *args,
    retryable_exceptions: tuple = (ConcurrencyConflict,),
    **kwargs
) -> Any:
    """
    Retry an async function with exponential backoff.

    Args:
        func: The async function to retry
        config: Retry configuration
        retryable_exceptions: Exceptions that should trigger retries
        *args, **kwargs: Arguments to pass to the function

    Returns:
        The result of the function call

    Raises:
        The last exception if all retries are exhausted. Any exception not
        listed in retryable_exceptions propagates on the first occurrence.
    """
    for attempt in range(config.max_attempts):
        try:
            result = await func(*args, **kwargs)

            if attempt > 0:
                logger.info(f"Function {func.__name__} succeeded on attempt {attempt + 1}")

            return result

        except retryable_exceptions as e:
            if attempt == config.max_attempts - 1:
                logger.error(f"All {config.max_attempts} attempts failed for {func.__name__}: {e}")
                raise

            delay = config.delay_for(attempt)
            logger.warning(
                f"Attempt {attempt + 1} failed for {func.__name__}: {e}. "
                f"Retrying in {delay:.2f}s..."
            )

            await asyncio.sleep(delay)


def retry_on_concurrency_error(
    max_attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
    jitter: bool = True
):
    """Decorator for retrying operations that lost an optimistic-lock race.

    Unset limits fall back to the admission retry settings.
    """

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            settings = get_settings()
            config = RetryConfig(
                max_attempts=max_attempts or settings.admission_max_retry_attempts,
                base_delay=base_delay if base_delay is not None else settings.admission_retry_base_delay,
                max_delay=max_delay if max_delay is not None else settings.admission_retry_max_delay,
                jitter=jitter
            )
            return await retry_async(func, config, *args, **kwargs)
        return wrapper

    return decorator
