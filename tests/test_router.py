"""Tests for MessageRouter dispatch."""

import asyncio
from unittest.mock import MagicMock

import pytest

from fleetsync.router import MessageRouter
from fleetsync.types import Frame


@pytest.fixture
def router():
    return MessageRouter()


class TestRoute:
    def test_decodes_and_dispatches(self, router):
        handler = MagicMock()
        router.register("heartbeat", handler)
        frame = router.route('{"type":"heartbeat","data":{"device_id":"A1"}}')
        handler.assert_called_once_with(frame)
        assert router.stats.frames_received == 1
        assert router.stats.by_type == {"heartbeat": 1}

    def test_malformed_frame_dropped(self, router):
        assert router.route("not json") is None
        assert router.stats.frames_dropped == 1
        # The next frame still goes through
        assert router.route('{"type":"pong"}') is not None

    def test_unknown_type_counted(self, router):
        router.route('{"type":"firmware_update"}')
        assert router.stats.unknown_types == 1

    def test_register_replaces(self, router):
        first, second = MagicMock(), MagicMock()
        router.register("alarm", first)
        router.register("alarm", second)
        router.dispatch(Frame("alarm", {}))
        first.assert_not_called()
        second.assert_called_once()
        assert router.handles("alarm")


class TestSubscribers:
    def test_order_type_then_wildcard_then_builtin(self, router):
        calls = []
        router.register("alarm", lambda f: calls.append("builtin"))
        router.subscribe_all(lambda f: calls.append("wildcard"))
        router.subscribe("alarm", lambda f: calls.append("typed"))
        router.dispatch(Frame("alarm", {}))
        assert calls == ["typed", "wildcard", "builtin"]

    def test_failing_subscriber_isolated(self, router):
        builtin = MagicMock()
        router.register("alarm", builtin)
        router.subscribe("alarm", MagicMock(side_effect=RuntimeError("boom")))
        router.dispatch(Frame("alarm", {}))
        builtin.assert_called_once()
        assert router.stats.subscriber_errors == 1

    def test_failing_builtin_counted(self, router):
        router.register("alarm", MagicMock(side_effect=KeyError("x")))
        router.dispatch(Frame("alarm", {}))
        assert router.stats.handler_errors == 1

    def test_unsubscribe(self, router):
        fn = MagicMock()
        sub = router.subscribe("alarm", fn)
        sub.cancel()
        router.dispatch(Frame("alarm", {}))
        fn.assert_not_called()

    def test_decorator(self, router):
        seen = []

        @router.on("pong")
        def handle(frame):
            seen.append(frame.type)

        router.dispatch(Frame("pong", {}))
        assert seen == ["pong"]

    @pytest.mark.asyncio
    async def test_async_subscriber_scheduled(self, router):
        seen = []

        async def handle(frame):
            seen.append(frame.type)

        router.subscribe("alarm", handle)
        router.dispatch(Frame("alarm", {}))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert seen == ["alarm"]

    @pytest.mark.asyncio
    async def test_async_subscriber_error_counted(self, router):
        async def handle(frame):
            raise RuntimeError("boom")

        router.subscribe_all(handle)
        router.dispatch(Frame("alarm", {}))
        for _ in range(3):
            await asyncio.sleep(0)
        assert router.stats.subscriber_errors == 1

    @pytest.mark.asyncio
    async def test_aclose_cancels_pending(self, router):
        started = asyncio.Event()

        async def slow(frame):
            started.set()
            await asyncio.sleep(60)

        router.subscribe_all(slow)
        router.dispatch(Frame("alarm", {}))
        await started.wait()
        await router.aclose()
        assert router._background_tasks == set()
