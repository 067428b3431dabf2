"""
Database utilities for transient connection failures
"""
import asyncio
import functools
import logging
from typing import Callable, Any, TypeVar, cast, Awaitable

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

T = TypeVar('T')

def _is_connection_error(exc: Exception) -> bool:
    if isinstance(exc, OperationalError):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return isinstance(exc, (ConnectionError, OSError))

def with_db_retry(
    max_retries: int = 3,
    retry_delay: float = 0.5
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Retry a read-only database coroutine on connection errors.

    Only wrap queries that are safe to repeat: a retried write could apply
    twice.

    Args:
        max_retries: Maximum number of retries before giving up
        retry_delay: Base delay in seconds, doubled on every retry
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if not _is_connection_error(e) or attempt >= max_retries:
                        if attempt:
                            logger.error(f"{func.__name__} failed after {attempt} retries: {e}")
                        raise
                    attempt += 1
                    delay = retry_delay * (2 ** (attempt - 1))
                    logger.warning(
                        f"Database connection error in {func.__name__}: {e}. "
                        f"Retrying in {delay:.2f}s... (Attempt {attempt}/{max_retries})"
                    )
                    await asyncio.sleep(delay)
                    # A failed statement leaves the session unusable until rolled back
                    for arg in (*args, *kwargs.values()):
                        if isinstance(arg, AsyncSession):
                            await arg.rollback()

        return cast(Callable[..., Awaitable[T]], wrapper)

    return decorator
