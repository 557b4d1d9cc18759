"""
Tests for the callback event dispatcher.
"""

import asyncio
import threading

import pytest

from proxy2asr.dispatcher import EventDispatcher
from proxy2asr.handlers.error_handler import ErrorContext, ErrorSeverity


class TestEventDispatcher:
    """Test callback dispatch and isolation."""

    @pytest.fixture
    def dispatcher(self):
        return EventDispatcher("ws_test")

    @pytest.mark.asyncio
    async def test_no_callback(self, dispatcher):
        assert dispatcher.dispatch("message", None, "hello") is None
        assert dispatcher.dispatched == 0

    @pytest.mark.asyncio
    async def test_async_callback_runs_on_own_task(self, dispatcher):
        seen = []

        async def on_message(message):
            seen.append((message, asyncio.current_task().get_name()))

        task = dispatcher.dispatch("message", on_message, "hello")
        await task

        assert seen == [("hello", "ws_test:on_message")]
        assert dispatcher.dispatched == 1

    @pytest.mark.asyncio
    async def test_sync_callback_runs_in_worker_thread(self, dispatcher):
        threads = []

        def on_connect(value):
            threads.append((value, threading.get_ident()))

        await dispatcher.dispatch("connect", on_connect, 42)

        assert threads[0][0] == 42
        assert threads[0][1] != threading.get_ident()

    @pytest.mark.asyncio
    async def test_sync_callback_returning_awaitable(self, dispatcher):
        seen = []

        async def later():
            seen.append("awaited")

        def on_connect():
            return later()

        await dispatcher.dispatch("connect", on_connect)

        assert seen == ["awaited"]

    @pytest.mark.asyncio
    async def test_callback_exception_is_reported(self, dispatcher, reported_errors):
        async def broken(message):
            raise RuntimeError("consumer bug")

        task = dispatcher.dispatch("message", broken, "hello")
        await task

        assert task.exception() is None
        assert len(reported_errors) == 1
        info = reported_errors[0]
        assert info.context == ErrorContext.CALLBACK
        assert info.severity == ErrorSeverity.MEDIUM
        assert info.operation == "on_message"
        assert info.connection_id == "ws_test"
        assert info.metadata == {}
        assert str(info.error) == "consumer bug"

    @pytest.mark.asyncio
    async def test_messages_start_in_dispatch_order(self, dispatcher):
        order = []

        async def on_message(message):
            order.append(message)

        for message in ["one", "two", "three"]:
            dispatcher.dispatch("message", on_message, message)
        await dispatcher.drain()

        assert order == ["one", "two", "three"]

    @pytest.mark.asyncio
    async def test_drain_waits_for_pending(self, dispatcher):
        release = asyncio.Event()
        done = []

        async def slow():
            await release.wait()
            done.append(True)

        dispatcher.dispatch("connect", slow)
        assert dispatcher.pending == 1

        asyncio.get_running_loop().call_later(0.01, release.set)
        await dispatcher.drain()

        assert done == [True]
        assert dispatcher.pending == 0

    @pytest.mark.asyncio
    async def test_drain_from_inside_callback(self, dispatcher):
        """A callback draining its own dispatcher must not wait on itself."""
        finished = []

        async def on_disconnect():
            await dispatcher.drain()
            finished.append(True)

        await asyncio.wait_for(dispatcher.dispatch("disconnect", on_disconnect), 1)

        assert finished == [True]
