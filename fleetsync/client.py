# =============================================================================
# fleetsync -- Sync Client
# =============================================================================
#
# Primary public API. Wires connection manager, router, domain handlers,
# entity store and notification feed into one explicitly constructed engine.
# Independent instances share no state.
# =============================================================================

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable

from ._logging import logger
from .auth import AuthProvider
from .config import SyncConfig
from .constants import (
    CMD_ALARM_START,
    CMD_ALARM_STOP,
    CMD_FIND_DEVICE,
    CMD_SEND_SMS,
    CMD_SEND_USSD,
)
from .connection import ConnectionManager, TransportFactory
from .events import Signal, Subscription
from .handlers import DomainEventHandlers
from .notifications import AlertSink, NotificationCenter
from .protocol import FrameCodec
from .router import AsyncFrameHandler, FrameHandler, MessageRouter
from .store import EntityStore
from .types import ConnectionState, ConnectionStatus


class FleetSyncClient:
    """Live fleet view for one operator console session.

    Args:
        config: Engine configuration.
        auth: Auth collaborator (credential, expiry check, logout).
        transport_factory: Opens the push transport. Defaults to ``websockets``.
        clock: Returns epoch seconds.
        alert_sink: Receives ephemeral alerts for each notification.
        on_session_invalidated: Called with a reason after a terminal auth
            failure, e.g. to redirect the host to its login screen.
        foreground: Signal the host emits when it returns to the foreground.

    Example::

        async with FleetSyncClient(config, auth) as client:
            client.subscribe("alarm", lambda frame: print(frame.data))
            await client.send_sms("860000000000001", phone_number="+15550100", message="hi")
    """

    def __init__(
        self,
        config: SyncConfig,
        auth: AuthProvider,
        *,
        transport_factory: TransportFactory | None = None,
        clock: Callable[[], float] = time.time,
        alert_sink: AlertSink | None = None,
        on_session_invalidated: Callable[[str], Any] | None = None,
        foreground: Signal[Any] | None = None,
    ) -> None:
        self._config = config
        self._codec = FrameCodec()
        self._background_tasks: set[asyncio.Task[Any]] = set()

        self.store = EntityStore()
        self.notifications = NotificationCenter(
            limit=config.notification_limit,
            alert_duration=config.alert_duration,
            alert_sink=alert_sink,
            clock=clock,
        )
        self._router = MessageRouter(self._codec)
        self._handlers = DomainEventHandlers(
            self.store,
            self.notifications,
            on_auth_failure=self._on_auth_failure,
            clock=clock,
        )
        self._handlers.register(self._router)

        self._connection = ConnectionManager(
            config,
            auth,
            transport_factory=transport_factory,
            on_message=self._router.route,
            on_session_invalidated=on_session_invalidated,
            clock=clock,
        )

        self._foreground_sub: Subscription | None = None
        if foreground is not None:
            self._foreground_sub = foreground.connect(self._on_foreground)

    # -- Context manager ------------------------------------------------------

    async def __aenter__(self) -> FleetSyncClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # -- Properties -----------------------------------------------------------

    @property
    def status(self) -> ConnectionStatus:
        return self._connection.status

    @property
    def state(self) -> ConnectionState:
        return self._connection.state

    @property
    def is_connected(self) -> bool:
        return self._connection.is_connected

    @property
    def state_changed(self) -> Signal[ConnectionStatus]:
        return self._connection.state_changed

    @property
    def router(self) -> MessageRouter:
        return self._router

    # -- Connect / Disconnect -------------------------------------------------

    async def connect(self, credential: str | None = None) -> bool:
        return await self._connection.connect(credential)

    async def disconnect(self) -> None:
        await self._connection.disconnect()

    async def reconnect(self) -> bool:
        return await self._connection.reconnect()

    async def handle_foreground(self) -> bool:
        return await self._connection.handle_foreground()

    async def close(self) -> None:
        """Disconnect and release background work."""
        if self._foreground_sub is not None:
            self._foreground_sub.cancel()
            self._foreground_sub = None
        tasks = list(self._background_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._background_tasks.clear()
        await self._connection.disconnect()
        await self._router.aclose()

    # -- Subscriptions --------------------------------------------------------

    def subscribe(self, frame_type: str, fn: FrameHandler | AsyncFrameHandler) -> Subscription:
        return self._router.subscribe(frame_type, fn)

    def subscribe_all(self, fn: FrameHandler | AsyncFrameHandler) -> Subscription:
        return self._router.subscribe_all(fn)

    def on(
        self, frame_type: str
    ) -> Callable[[FrameHandler | AsyncFrameHandler], FrameHandler | AsyncFrameHandler]:
        """Decorator to subscribe to a frame type.

        Example::

            @client.on("sms_message")
            def handle(frame: Frame):
                print(frame.data["phone_number"])
        """
        return self._router.on(frame_type)

    # -- Commands -------------------------------------------------------------

    async def send_command(self, command: str, device_id: str, **fields: Any) -> bool:
        """Forward a device command verbatim. Returns False when not sent."""
        frame = self._codec.encode_command(command, device_id, fields)
        ok = await self._connection.send(frame)
        if ok:
            logger.debug("Sent %s to %s", command, device_id)
        return ok

    async def send_sms(self, device_id: str, **fields: Any) -> bool:
        return await self.send_command(CMD_SEND_SMS, device_id, **fields)

    async def send_ussd(self, device_id: str, **fields: Any) -> bool:
        return await self.send_command(CMD_SEND_USSD, device_id, **fields)

    async def find_device(self, device_id: str, **fields: Any) -> bool:
        return await self.send_command(CMD_FIND_DEVICE, device_id, **fields)

    async def start_alarm(self, device_id: str, **fields: Any) -> bool:
        return await self.send_command(CMD_ALARM_START, device_id, **fields)

    async def stop_alarm(self, device_id: str, **fields: Any) -> bool:
        return await self.send_command(CMD_ALARM_STOP, device_id, **fields)

    # -- Stats ----------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """Return engine statistics."""
        stats = self._router.stats
        status = self._connection.status
        return {
            "state": status.state.value,
            "retry_count": status.retry_count,
            "retry_pending": status.retry_pending,
            "last_error": status.last_error,
            "frames_received": stats.frames_received,
            "frames_dropped": stats.frames_dropped,
            "unknown_types": stats.unknown_types,
            "subscriber_errors": stats.subscriber_errors,
            "handler_errors": stats.handler_errors,
            "by_type": dict(stats.by_type),
            "devices": len(self.store),
            "alarm_logs": len(self.store.alarm_logs()),
            "traffic_logs": len(self.store.traffic_logs()),
            "notifications": len(self.notifications),
            "unread_notifications": self.notifications.unread_count,
            "last_pong": self._handlers.last_pong,
        }

    # -- Internal -------------------------------------------------------------

    def _fire_task(self, coro: Any) -> None:
        """Schedule a coroutine with a strong reference to prevent GC."""
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    def _on_auth_failure(self, reason: str) -> None:
        self._fire_task(self._connection.invalidate_session(reason))

    def _on_foreground(self, value: Any = True) -> None:
        if value is False:
            return
        self._fire_task(self._connection.handle_foreground())
