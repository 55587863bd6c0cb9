"""
Resilience Patterns

Retry decorators for transient storage failures: SQLite lock contention
and Postgres serialization failures surface as peewee OperationalError.
Integrity errors are never retried; they carry meaning (duplicates).
"""

import functools
from typing import Any, Callable, Optional, TypeVar

from peewee import OperationalError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from core.logging import get_logger
from core.settings import settings


# Type variable for generic return types
T = TypeVar("T")


def with_db_retry(
    max_attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator factory for retrying a whole transaction on transient errors.

    Only wrap the outermost transactional call: retrying inside an open
    transaction would replay statements against a rolled-back connection.
    Unset arguments fall back to the db_retry_* settings.

    Example:
        @with_db_retry()
        def _persist(self, ...):
            with db.atomic():
                ...
    """
    log = get_logger("retry")
    attempts = max_attempts or settings.db_retry_max_attempts
    base = base_delay if base_delay is not None else settings.db_retry_base_delay
    ceiling = max_delay if max_delay is not None else settings.db_retry_max_delay

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @retry(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=base, max=ceiling),
            retry=retry_if_exception_type(OperationalError),
            reraise=True,
        )
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return func(*args, **kwargs)
            except OperationalError as e:
                log.warning(
                    "db_retry_attempt",
                    function=func.__name__,
                    error=str(e),
                )
                raise

        return wrapper

    return decorator


__all__ = [
    "with_db_retry",
]
