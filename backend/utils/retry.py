"""Timeout and retry helpers for slow mounts and flaky providers."""

import asyncio
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

import structlog

from backend.utils.constants import TIMEOUTS

logger = structlog.get_logger(__name__)

T = TypeVar("T")


async def with_timeout(awaitable: Awaitable[T], timeout: float, operation_name: str) -> T:
    """Await with a timeout, raising a descriptive TimeoutError."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise TimeoutError(
            f'Operation "{operation_name}" timed out after {timeout:.0f}s. '
            "This may indicate a slow or unresponsive mounted drive."
        ) from e


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    operation_name: str,
    max_retries: int = 3,
    initial_delay: float = TIMEOUTS.RETRY_INITIAL_DELAY,
    max_delay: float = TIMEOUTS.RETRY_MAX_DELAY,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    should_retry: Optional[Callable[[BaseException], bool]] = None,
) -> T:
    """
    Run an async operation, retrying with exponential backoff.

    The operation is attempted ``max_retries + 1`` times in total. The last
    error is re-raised once attempts are exhausted.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except retry_on as e:
            if should_retry is not None and not should_retry(e):
                raise
            if attempt >= max_retries:
                logger.error(
                    "Operation failed after retries",
                    operation=operation_name,
                    attempts=attempt + 1,
                    error=str(e),
                )
                raise

            delay = min(initial_delay * (2 ** attempt), max_delay)
            logger.warning(
                "Operation failed, retrying",
                operation=operation_name,
                attempt=attempt + 1,
                max_attempts=max_retries + 1,
                retry_in=delay,
                error=str(e),
            )
            await asyncio.sleep(delay)
            attempt += 1


async def with_timeout_and_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    operation_name: str,
    timeout: float,
    max_retries: int = 2,
) -> T:
    """Combine timeout and retry; each attempt gets its own timeout."""
    return await with_retry(
        lambda: with_timeout(operation(), timeout, operation_name),
        operation_name=operation_name,
        max_retries=max_retries,
        retry_on=(OSError, TimeoutError),
    )
