"""Unit tests for the bounded async retry helper."""

from unittest.mock import AsyncMock, patch

import pytest

from dbuser_operator.errors import RemoteAPIError, RemoteNotFoundError
from dbuser_operator.utils.retry import retry_async


class TestRetryAsync:
    """Test attempt counting and early exits."""

    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        operation = AsyncMock(return_value="done")

        result = await retry_async(operation, operation_name="noop")

        assert result == "done"
        operation.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        operation = AsyncMock(side_effect=[RemoteAPIError("boom"), "done"])

        result = await retry_async(operation, operation_name="flaky")

        assert result == "done"
        assert operation.await_count == 2

    @pytest.mark.asyncio
    async def test_raises_last_error_when_attempts_run_out(self):
        operation = AsyncMock(side_effect=RemoteAPIError("boom"))

        with pytest.raises(RemoteAPIError):
            await retry_async(operation, operation_name="broken", max_attempts=3)

        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_success_predicate_ends_loop_with_none(self):
        operation = AsyncMock(side_effect=RemoteNotFoundError("gone"))

        result = await retry_async(
            operation,
            operation_name="delete",
            is_success=lambda e: isinstance(e, RemoteNotFoundError),
        )

        assert result is None
        operation.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_terminal_predicate_reraises_immediately(self):
        operation = AsyncMock(side_effect=RemoteAPIError("bad", status_code=400))

        with pytest.raises(RemoteAPIError):
            await retry_async(
                operation,
                operation_name="update",
                is_terminal=lambda e: not e.retryable,
            )

        operation.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_backoff_between_attempts(self):
        operation = AsyncMock(side_effect=RemoteAPIError("boom"))

        with patch(
            "dbuser_operator.utils.retry.asyncio.sleep", new_callable=AsyncMock
        ) as mock_sleep:
            with pytest.raises(RemoteAPIError):
                await retry_async(
                    operation,
                    operation_name="slow",
                    max_attempts=3,
                    initial_delay=1.0,
                    backoff_factor=2.0,
                )

        assert [c.args[0] for c in mock_sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError, match="max_attempts"):
            await retry_async(AsyncMock(), operation_name="never", max_attempts=0)
