"""Shared utilities for sitewatch."""

from .async_utils import (
    AsyncContextManager,
    create_task_with_error_handling,
    retry_async,
    run_with_timeout,
)
from .logging import (
    LoggingContextManager,
    get_logger,
    get_structured_logger,
    setup_logging,
)
from .types import AsyncTimeoutError, SitewatchError, UtilityError

__all__ = [
    "setup_logging",
    "get_logger",
    "get_structured_logger",
    "LoggingContextManager",
    "run_with_timeout",
    "retry_async",
    "create_task_with_error_handling",
    "AsyncContextManager",
    "SitewatchError",
    "UtilityError",
    "AsyncTimeoutError",
]
