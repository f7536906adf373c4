# =============================================================================
# fleetsync -- Message Router
# =============================================================================
#
# Decode -> external subscribers (per type, then wildcard) -> one built-in
# handler chosen by exact type. A bad frame or a failing callback is logged
# and never affects the next frame.
# =============================================================================

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, Awaitable, Callable

from ._logging import logger
from .errors import DecodeError
from .events import Subscription
from .protocol import FrameCodec
from .types import Frame, StatsCounter

# Type alias for frame handlers
FrameHandler = Callable[[Frame], Any]
AsyncFrameHandler = Callable[[Frame], Awaitable[Any]]


class MessageRouter:
    """Dispatch decoded frames to subscribers and built-in handlers.

    Subscribers may be plain functions or coroutine functions; coroutines
    are scheduled as background tasks.
    """

    def __init__(self, codec: FrameCodec | None = None) -> None:
        self._codec = codec or FrameCodec()
        self._subscribers: dict[str, list[FrameHandler | AsyncFrameHandler]] = defaultdict(
            list
        )
        self._wildcard_subscribers: list[FrameHandler | AsyncFrameHandler] = []
        # Built-in handler dispatch table (dict lookup = O(1))
        self._builtin: dict[str, FrameHandler] = {}
        self._stats = StatsCounter()
        self._background_tasks: set[asyncio.Task[Any]] = set()

    @property
    def stats(self) -> StatsCounter:
        return self._stats

    def handles(self, frame_type: str) -> bool:
        return frame_type in self._builtin

    # -- Registration ---------------------------------------------------------

    def register(self, frame_type: str, handler: FrameHandler) -> None:
        """Install the built-in handler for *frame_type*, replacing any previous one."""
        if frame_type in self._builtin:
            logger.debug("Replacing built-in handler for '%s'", frame_type)
        self._builtin[frame_type] = handler

    def subscribe(
        self, frame_type: str, fn: FrameHandler | AsyncFrameHandler
    ) -> Subscription:
        """Register an external subscriber. Returns a removable handle."""
        handlers = self._subscribers[frame_type]
        handlers.append(fn)

        def _remove() -> None:
            if fn in handlers:
                handlers.remove(fn)

        return Subscription(_remove)

    def subscribe_all(self, fn: FrameHandler | AsyncFrameHandler) -> Subscription:
        """Register a subscriber for every frame type."""
        self._wildcard_subscribers.append(fn)

        def _remove() -> None:
            if fn in self._wildcard_subscribers:
                self._wildcard_subscribers.remove(fn)

        return Subscription(_remove)

    def on(
        self, frame_type: str
    ) -> Callable[[FrameHandler | AsyncFrameHandler], FrameHandler | AsyncFrameHandler]:
        """Decorator form of :meth:`subscribe`.

        Example::

            @router.on("alarm")
            def handle(frame: Frame):
                print(frame.data["message"])
        """

        def decorator(fn: FrameHandler | AsyncFrameHandler) -> FrameHandler | AsyncFrameHandler:
            self.subscribe(frame_type, fn)
            return fn

        return decorator

    # -- Dispatch -------------------------------------------------------------

    def route(self, raw: str | bytes) -> Frame | None:
        """Decode and dispatch one raw frame. Returns the frame, or None if dropped."""
        self._stats.frames_received += 1
        try:
            frame = self._codec.decode(raw)
        except DecodeError as exc:
            self._stats.frames_dropped += 1
            logger.warning("Dropping malformed frame: %s", exc)
            return None

        self.dispatch(frame)
        return frame

    def dispatch(self, frame: Frame) -> None:
        """Dispatch an already decoded frame."""
        self._stats.by_type[frame.type] = self._stats.by_type.get(frame.type, 0) + 1
        logger.debug("Frame: %s", frame.type)

        handlers = self._subscribers.get(frame.type, []) + self._wildcard_subscribers
        for handler in handlers:
            try:
                result = handler(frame)
                if asyncio.iscoroutine(result):
                    self._fire_task(result, frame.type)
            except Exception as exc:
                self._stats.subscriber_errors += 1
                logger.error("Subscriber error for '%s': %s", frame.type, exc)

        builtin = self._builtin.get(frame.type)
        if builtin is None:
            self._stats.unknown_types += 1
            logger.debug("No handler for frame type '%s'", frame.type)
            return
        try:
            builtin(frame)
        except Exception:
            self._stats.handler_errors += 1
            logger.exception("Handler error for '%s'", frame.type)

    def _fire_task(self, coro: Any, frame_type: str) -> None:
        """Schedule a coroutine with a strong reference to prevent GC."""
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)

        def _done(t: asyncio.Task[Any]) -> None:
            self._background_tasks.discard(t)
            if not t.cancelled() and t.exception() is not None:
                self._stats.subscriber_errors += 1
                logger.error("Subscriber error for '%s': %s", frame_type, t.exception())

        task.add_done_callback(_done)

    async def aclose(self) -> None:
        """Cancel subscriber tasks still running."""
        tasks = list(self._background_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._background_tasks.clear()
