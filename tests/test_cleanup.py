"""PKCE sweep task tests"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from sharekit.tasks.cleanup import pkce_sweep_task, sweep_once


@pytest.mark.medium
class TestPkceSweep:
    """Test the background sweep wrapper"""

    @pytest.mark.asyncio
    async def test_sweep_once_returns_count(self):
        """Test the swept count is passed through"""
        oauth = AsyncMock()
        oauth.sweep_expired_challenges.return_value = 2
        assert await sweep_once(oauth) == 2

    @pytest.mark.asyncio
    async def test_sweep_once_logs_failures(self):
        """Test a Redis failure does not escape the sweep"""
        oauth = AsyncMock()
        oauth.sweep_expired_challenges.side_effect = ConnectionError("redis down")
        assert await sweep_once(oauth) == 0

    @pytest.mark.asyncio
    async def test_task_runs_until_cancelled(self):
        """Test the loop keeps sweeping and stops on cancellation"""
        oauth = AsyncMock()
        oauth.sweep_expired_challenges.return_value = 0
        task = asyncio.create_task(pkce_sweep_task(oauth, 0))
        for _ in range(10):
            await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert oauth.sweep_expired_challenges.await_count >= 2
