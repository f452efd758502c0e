"""Tests for async helpers."""

import asyncio

import pytest

from sitewatch.utils.async_utils import (
    create_task_with_error_handling,
    retry_async,
    run_with_timeout,
)
from sitewatch.utils.types import AsyncTimeoutError


class TestRetryAsync:
    async def test_retries_until_success(self):
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("down")
            return "ok"

        assert await retry_async(flaky, max_retries=3, delay=0) == "ok"
        assert len(attempts) == 3

    async def test_raises_last_error(self):
        attempts = []

        async def broken():
            attempts.append(1)
            raise ConnectionError(f"attempt {len(attempts)}")

        with pytest.raises(ConnectionError, match="attempt 3"):
            await retry_async(broken, max_retries=2, delay=0)

    async def test_other_exceptions_are_not_retried(self):
        attempts = []

        async def broken():
            attempts.append(1)
            raise KeyError("nope")

        with pytest.raises(KeyError):
            await retry_async(broken, max_retries=5, delay=0, exceptions=(ConnectionError,))
        assert len(attempts) == 1


class TestRunWithTimeout:
    async def test_returns_result(self):
        async def quick():
            return 42

        assert await run_with_timeout(quick(), timeout=1) == 42

    async def test_timeout_message(self):
        with pytest.raises(AsyncTimeoutError, match="too slow"):
            await run_with_timeout(asyncio.sleep(5), timeout=0.01, timeout_message="too slow")


async def test_task_wrapper_propagates_failure():
    async def explode():
        raise RuntimeError("boom")

    task = create_task_with_error_handling(explode(), task_name="explode")

    with pytest.raises(RuntimeError, match="boom"):
        await task
    assert task.get_name() == "explode"
