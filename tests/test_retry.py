"""Tests for timeout and retry helpers."""

import asyncio

import pytest

from backend.utils.retry import with_retry, with_timeout, with_timeout_and_retry


@pytest.fixture
def no_sleep(mocker):
    """Record backoff delays instead of sleeping."""
    delays = []
    real_sleep = asyncio.sleep

    async def fake_sleep(delay, *args, **kwargs):
        delays.append(delay)
        await real_sleep(0)

    mocker.patch("backend.utils.retry.asyncio.sleep", side_effect=fake_sleep)
    return delays


class TestWithRetry:
    async def test_succeeds_after_transient_failures(self, no_sleep):
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise OSError("mount hiccup")
            return "ok"

        result = await with_retry(flaky, operation_name="flaky", max_retries=3, initial_delay=1, max_delay=10)

        assert result == "ok"
        assert len(attempts) == 3
        assert no_sleep == [1, 2]

    async def test_gives_up_after_max_retries(self, no_sleep):
        async def broken():
            raise OSError("gone")

        with pytest.raises(OSError):
            await with_retry(broken, operation_name="broken", max_retries=2)
        assert len(no_sleep) == 2

    async def test_backoff_capped(self, no_sleep):
        async def broken():
            raise OSError("gone")

        with pytest.raises(OSError):
            await with_retry(broken, operation_name="broken", max_retries=5, initial_delay=1, max_delay=4)
        assert no_sleep == [1, 2, 4, 4, 4]

    async def test_should_retry_short_circuits(self, no_sleep):
        async def rejected():
            raise ValueError("bad request")

        with pytest.raises(ValueError):
            await with_retry(
                rejected,
                operation_name="rejected",
                retry_on=(ValueError,),
                should_retry=lambda e: False,
            )
        assert no_sleep == []

    async def test_unlisted_errors_propagate(self, no_sleep):
        async def boom():
            raise KeyError("x")

        with pytest.raises(KeyError):
            await with_retry(boom, operation_name="boom", retry_on=(OSError,))
        assert no_sleep == []


class TestTimeouts:
    async def test_with_timeout_raises_descriptive_error(self):
        with pytest.raises(TimeoutError, match="slow"):
            await with_timeout(asyncio.sleep(1), timeout=0.01, operation_name="slow walk")

    async def test_each_attempt_gets_fresh_timeout(self, no_sleep):
        calls = []

        async def slow_then_fast():
            calls.append(1)
            if len(calls) == 1:
                await asyncio.Event().wait()
            return len(calls)

        result = await with_timeout_and_retry(
            slow_then_fast, operation_name="walk", timeout=0.05, max_retries=1
        )
        assert result == 2
