"""Tests for insight/cancellation.py."""

from __future__ import annotations

import asyncio
import inspect

import pytest

from insight.cancellation import CancellationToken, ensure_token
from insight.errors import AbortedError


class TestCancellationToken:
    def test_starts_uncancelled(self):
        token = CancellationToken()
        assert token.cancelled is False
        token.raise_if_cancelled()

    def test_cancel_is_idempotent_and_keeps_first_reason(self):
        token = CancellationToken()
        token.cancel("first")
        token.cancel("second")
        assert token.cancelled is True
        with pytest.raises(AbortedError, match="first"):
            token.raise_if_cancelled()

    def test_ensure_token(self):
        token = CancellationToken()
        assert ensure_token(token) is token
        assert isinstance(ensure_token(None), CancellationToken)

    @pytest.mark.asyncio
    async def test_sleep_completes(self):
        await CancellationToken().sleep(0.01)

    @pytest.mark.asyncio
    async def test_sleep_raises_when_cancelled_mid_wait(self):
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.02, token.cancel)
        with pytest.raises(AbortedError):
            await asyncio.wait_for(token.sleep(30), timeout=5)

    @pytest.mark.asyncio
    async def test_run_returns_result(self):
        async def work():
            return 42

        assert await CancellationToken().run(work()) == 42

    @pytest.mark.asyncio
    async def test_run_propagates_errors(self):
        async def work():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            await CancellationToken().run(work())

    @pytest.mark.asyncio
    async def test_run_abandons_in_flight_call(self):
        token = CancellationToken()
        finished = False

        async def slow_call():
            nonlocal finished
            await asyncio.sleep(30)
            finished = True

        asyncio.get_running_loop().call_later(0.02, token.cancel)
        with pytest.raises(AbortedError):
            await asyncio.wait_for(token.run(slow_call()), timeout=5)
        assert finished is False

    @pytest.mark.asyncio
    async def test_run_refuses_to_start_when_cancelled(self):
        token = CancellationToken()
        token.cancel()

        async def work():
            return 1

        coro = work()
        with pytest.raises(AbortedError):
            await token.run(coro)
        assert inspect.getcoroutinestate(coro) == inspect.CORO_CLOSED
