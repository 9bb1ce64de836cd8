"""Retry mechanisms for submission store database operations."""

import functools
import logging
import sqlite3
import time
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRYABLE_MESSAGES = (
    "database is locked",
    "database table is locked",
    "cannot start a transaction within a transaction",
)
_FATAL_MESSAGES = ("no such table", "no such column", "syntax error")


def with_db_retry(
    max_retries: int = 5,
    base_delay: float = 0.1,
    max_delay: float = 2.0,
    backoff_factor: float = 2.0,
    retry_on: tuple[type[Exception], ...] = (sqlite3.OperationalError,),
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator that adds retry logic with exponential backoff for database operations.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
        backoff_factor: Multiplier for exponential backoff
        retry_on: Tuple of exception types to retry on

    Returns:
        Decorated function with retry logic
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    # Constraint violations are answers, not contention
                    should_retry = isinstance(e, retry_on) and not isinstance(
                        e, sqlite3.IntegrityError
                    )

                    if isinstance(e, sqlite3.OperationalError):
                        error_msg = str(e).lower()
                        if not any(m in error_msg for m in _RETRYABLE_MESSAGES) and any(
                            m in error_msg for m in _FATAL_MESSAGES
                        ):
                            should_retry = False

                    if not should_retry or attempt == max_retries:
                        raise

                    delay = min(base_delay * (backoff_factor**attempt), max_delay)

                    logger.debug(
                        f"Database operation failed (attempt {attempt + 1}/{max_retries + 1}): {e}. "
                        f"Retrying in {delay:.2f}s..."
                    )

                    time.sleep(delay)

            raise RuntimeError("Unexpected retry loop exit")

        return wrapper

    return decorator


def with_transaction_retry(func: Callable[..., T]) -> Callable[..., T]:
    """Decorator specifically for SQLite transaction operations.

    Uses more aggressive retry settings for transaction-level operations
    that are more likely to encounter locks.
    """
    return with_db_retry(
        max_retries=8,
        base_delay=0.05,
        max_delay=1.0,
        backoff_factor=1.5,
        retry_on=(sqlite3.OperationalError, sqlite3.DatabaseError),
    )(func)
