"""Tests for core.retry."""
from unittest.mock import AsyncMock, call, patch

import pytest

from core.retry import backoff_delay, retry


def flaky(failures: int):
    """Operation that fails ``failures`` times, then returns "ok"."""
    calls = []

    async def op():
        calls.append(len(calls) + 1)
        if len(calls) <= failures:
            raise RuntimeError(f"failure {len(calls)}")
        return "ok"

    return op, calls


@pytest.fixture
def sleeps():
    with patch("core.retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep


class TestBackoffDelay:
    def test_doubles_from_one_second(self):
        assert [backoff_delay(n) for n in range(5)] == [1, 2, 4, 8, 16]


class TestRetry:
    @pytest.mark.asyncio
    async def test_succeeds_on_first_try(self, sleeps):
        op, calls = flaky(0)

        assert await retry("op", 3, op) == "ok"
        assert len(calls) == 1
        sleeps.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self, sleeps):
        op, calls = flaky(3)

        assert await retry("op", 5, op) == "ok"
        assert len(calls) == 4
        assert sleeps.await_args_list == [call(1), call(2), call(4)]

    @pytest.mark.asyncio
    async def test_raises_last_error_after_exhausting_attempts(self, sleeps):
        op, calls = flaky(100)

        with pytest.raises(RuntimeError, match="failure 3"):
            await retry("op", 3, op)

        assert len(calls) == 3
        # no delay after the final attempt
        assert sleeps.await_args_list == [call(1), call(2)]

    @pytest.mark.asyncio
    async def test_single_attempt_means_no_retry(self, sleeps):
        op, calls = flaky(1)

        with pytest.raises(RuntimeError, match="failure 1"):
            await retry("op", 1, op)

        assert len(calls) == 1
        sleeps.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejects_zero_attempts(self, sleeps):
        op, calls = flaky(0)

        with pytest.raises(ValueError):
            await retry("op", 0, op)
        assert calls == []

    @pytest.mark.asyncio
    async def test_logs_each_retry(self, sleeps, caplog):
        op, _ = flaky(1)

        with caplog.at_level("WARNING", logger="core.retry"):
            await retry("forward P1 to hook", 2, op)

        assert "forward P1 to hook" in caplog.text
        assert "retrying in 1s" in caplog.text
