"""Async utility functions and helpers."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, Optional, TypeVar

from .types import AsyncTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_with_timeout(
    coro: Awaitable[T], timeout: float, timeout_message: Optional[str] = None
) -> T:
    """Run a coroutine with a timeout."""
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except asyncio.TimeoutError as e:
        msg = timeout_message or f"Operation timed out after {timeout}s"
        logger.warning(msg)
        raise AsyncTimeoutError(msg) from e


async def retry_async(
    coro_factory: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    delay: float = 1.0,
    backoff_factor: float = 2.0,
    exceptions: tuple = (Exception,),
) -> T:
    """Retry an async callable with exponential backoff.

    ``coro_factory`` is called once per attempt, since a coroutine object can
    only be awaited once.
    """
    last_exception: Optional[BaseException] = None
    current_delay = delay

    for attempt in range(max_retries + 1):
        try:
            return await coro_factory()
        except exceptions as e:
            last_exception = e

            if attempt == max_retries:
                logger.error(f"All {max_retries + 1} attempts failed")
                break

            logger.warning(
                f"Attempt {attempt + 1} failed, retrying in {current_delay}s: {str(e)}"
            )
            await asyncio.sleep(current_delay)
            current_delay *= backoff_factor

    # If we get here, all retries failed
    raise last_exception


class AsyncContextManager:
    """Base class for async context managers."""

    async def __aenter__(self):
        await self.setup()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.cleanup()

    async def setup(self) -> None:
        """Setup the context manager."""
        pass

    async def cleanup(self) -> None:
        """Cleanup the context manager."""
        pass


def create_task_with_error_handling(
    coro: Coroutine[Any, Any, T], task_name: str = "unnamed_task"
) -> asyncio.Task[T]:
    """Create a task that logs its failure instead of dying silently."""

    async def wrapped_coro() -> T:
        try:
            return await coro
        except asyncio.CancelledError:
            logger.warning(f"Task '{task_name}' cancelled")
            raise
        except Exception as e:
            logger.error(f"Task '{task_name}' failed: {str(e)}", exc_info=True)
            raise

    task = asyncio.create_task(wrapped_coro())
    task.set_name(task_name)
    return task
