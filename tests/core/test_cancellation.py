"""
Tests for cooperative cancellation tokens.

Tests cover:
- Flag and reason bookkeeping
- Callbacks (registration, removal, late registration)
- run(): interruption, pre-cancelled tokens, outer task cancellation
- sleep()
"""

from __future__ import annotations

import asyncio

import pytest

from modhub.core.cancellation import CancellationToken, OperationCancelled


class TestCancellationToken:
    """Tests for the token's flag, reason and callbacks."""

    def test_new_token_is_active(self):
        token = CancellationToken()
        assert token.cancelled is False
        assert token.reason is None
        assert "active" in repr(token)

    def test_cancel_sets_reason(self):
        token = CancellationToken()
        token.cancel("superseded")
        assert token.cancelled is True
        assert token.reason == "superseded"

    def test_cancel_twice_keeps_first_reason(self):
        token = CancellationToken()
        token.cancel("first")
        token.cancel("second")
        assert token.reason == "first"

    def test_callbacks_run_once(self):
        token = CancellationToken()
        calls = []
        token.add_callback(calls.append)
        token.cancel("stop")
        token.cancel("again")
        assert calls == ["stop"]

    def test_callback_added_after_cancel_runs_immediately(self):
        token = CancellationToken()
        token.cancel("late")
        calls = []
        token.add_callback(calls.append)
        assert calls == ["late"]

    def test_removed_callback_not_called(self):
        token = CancellationToken()
        calls = []
        token.add_callback(calls.append)
        token.remove_callback(calls.append)
        token.cancel()
        assert calls == []

    def test_failing_callback_does_not_stop_others(self):
        token = CancellationToken()
        calls = []

        def boom(reason):
            raise RuntimeError("boom")

        token.add_callback(boom)
        token.add_callback(calls.append)
        token.cancel("x")
        assert calls == ["x"]

    def test_raise_if_cancelled(self):
        token = CancellationToken()
        token.raise_if_cancelled()
        token.cancel("gone")
        with pytest.raises(OperationCancelled) as exc_info:
            token.raise_if_cancelled()
        assert exc_info.value.reason == "gone"


class TestRun:
    """Tests for awaiting through a token."""

    @pytest.mark.asyncio
    async def test_run_returns_result(self):
        async def work():
            return 42

        assert await CancellationToken().run(work()) == 42

    @pytest.mark.asyncio
    async def test_run_propagates_errors(self):
        async def work():
            raise ValueError("bad")

        with pytest.raises(ValueError):
            await CancellationToken().run(work())

    @pytest.mark.asyncio
    async def test_pre_cancelled_token_never_starts(self):
        started = []

        async def work():
            started.append(True)

        token = CancellationToken()
        token.cancel("early")
        with pytest.raises(OperationCancelled):
            await token.run(work())
        assert started == []

    @pytest.mark.asyncio
    async def test_cancel_interrupts_pending_work(self):
        token = CancellationToken()
        blocker = asyncio.Event()

        async def work():
            await blocker.wait()
            return "finished"

        runner = asyncio.create_task(token.run(work()))
        await asyncio.sleep(0)
        token.cancel("superseded")

        with pytest.raises(OperationCancelled) as exc_info:
            await runner
        assert exc_info.value.reason == "superseded"

    @pytest.mark.asyncio
    async def test_outer_cancellation_is_not_translated(self):
        token = CancellationToken()

        runner = asyncio.create_task(token.run(asyncio.sleep(10)))
        await asyncio.sleep(0)
        runner.cancel()

        with pytest.raises(asyncio.CancelledError):
            await runner
        assert token.cancelled is False

    @pytest.mark.asyncio
    async def test_sleep_interrupted(self):
        token = CancellationToken()
        sleeper = asyncio.create_task(token.sleep(10))
        await asyncio.sleep(0)
        token.cancel("wake")

        with pytest.raises(OperationCancelled):
            await asyncio.wait_for(sleeper, timeout=1)

    @pytest.mark.asyncio
    async def test_sleep_completes(self):
        await CancellationToken().sleep(0)
