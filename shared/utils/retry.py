"""
Retry utilities with exponential backoff for the Good Brief curator.

Two flavours are provided:

* ``retry`` - decorator for exception-raising calls (alert delivery, Redis).
* ``retry_outcome`` - loop for calls that report failures as tagged outcome
  values instead of raising (the scoring oracle).
"""

import random
import time
from functools import wraps
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

from shared.app_logging.logger import get_logger
from shared.config.settings import get_settings

logger = get_logger("curator.retry")

T = TypeVar("T")


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""
    pass


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        backoff_factor: float = 2.0,
        jitter: bool = False,
        retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,)
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.jitter = jitter
        self.retryable_exceptions = retryable_exceptions

    @classmethod
    def from_settings(cls) -> "RetryConfig":
        """Oracle retry policy: attempt n waits base * factor**n (1s, 2s, ...)."""
        curator = get_settings().curator
        return cls(
            max_attempts=curator.max_attempts,
            base_delay=curator.retry_base_delay,
            backoff_factor=curator.retry_backoff_factor,
        )


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate delay after a failed attempt (0-based) with exponential backoff."""
    delay = config.base_delay * (config.backoff_factor ** attempt)
    delay = min(delay, config.max_delay)

    if config.jitter:
        jitter_range = delay * 0.1
        delay += random.uniform(-jitter_range, jitter_range)

    return max(0, delay)


def retry_outcome(
    func: Callable[[], T],
    is_retryable: Callable[[T], bool],
    config: Optional[RetryConfig] = None,
    sleep: Optional[Callable[[float], None]] = None,
    label: str = "call",
) -> T:
    """
    Call ``func`` until it returns an outcome that is not retryable or the
    attempts run out. The last outcome is returned either way; nothing is raised.
    """
    config = config or RetryConfig.from_settings()

    outcome = func()
    for attempt in range(1, config.max_attempts):
        if not is_retryable(outcome):
            return outcome

        delay = calculate_delay(attempt - 1, config)
        logger.warning(
            f"{label} failed (attempt {attempt}/{config.max_attempts}): {outcome}. "
            f"Retrying in {delay:.2f}s"
        )
        (sleep or time.sleep)(delay)
        outcome = func()

    return outcome


def retry(
    max_retries: Optional[int] = None,
    base_delay: Optional[float] = None,
    backoff_factor: Optional[float] = None,
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[Exception, int], None]] = None,
    sleep: Optional[Callable[[float], None]] = None,
):
    """
    Decorator for retrying function calls with exponential backoff.

    Args:
        max_retries: Retries after the first attempt (default: CURATOR_MAX_ATTEMPTS - 1)
        base_delay: Base delay between retries in seconds
        backoff_factor: Multiplier for delay after each retry
        retryable_exceptions: Tuple of exception types to retry on
        on_retry: Callback function called on each retry attempt
        sleep: Sleep function, replaceable in tests

    Returns:
        Decorated function
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            curator = get_settings().curator
            retries = max_retries if max_retries is not None else curator.max_attempts - 1
            config = RetryConfig(
                max_attempts=retries + 1,
                base_delay=base_delay if base_delay is not None else curator.retry_base_delay,
                backoff_factor=backoff_factor or curator.retry_backoff_factor,
                jitter=True,
                retryable_exceptions=retryable_exceptions
            )

            for attempt in range(config.max_attempts):
                try:
                    return func(*args, **kwargs)
                except config.retryable_exceptions as e:
                    if attempt == config.max_attempts - 1:
                        logger.error(f"Function {func.__name__} failed after {retries} retries: {e}")
                        raise RetryError(f"Function {func.__name__} failed after {retries} retries") from e

                    delay = calculate_delay(attempt, config)
                    logger.warning(f"Function {func.__name__} failed (attempt {attempt + 1}/{config.max_attempts}): {e}. Retrying in {delay:.2f}s")

                    if on_retry:
                        on_retry(e, attempt + 1)

                    (sleep or time.sleep)(delay)

            raise RetryError(f"Function {func.__name__} failed after {retries} retries")

        return wrapper
    return decorator
