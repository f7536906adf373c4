# =============================================================================
# fleetsync -- Connection Manager
# =============================================================================
#
# Push connection lifecycle: credential check, open, heartbeat, close
# classification and bounded fixed-delay reconnection.
#
# Every open attempt gets a generation number. Disconnect and reconnect bump
# the generation, so late callbacks from a superseded attempt (an open that
# completes after disconnect, a final message, a close) are ignored and a
# late-opened transport is closed again.
# =============================================================================

from __future__ import annotations

import asyncio
import time
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol
from urllib.parse import urlencode

import websockets.asyncio.client
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidStatus

from ._logging import logger
from .auth import AuthProvider
from .config import SyncConfig
from .constants import (
    AUTH_CLOSE_CODES,
    AUTH_HTTP_STATUSES,
    AUTH_REASON_MARKERS,
    MAX_MESSAGE_SIZE,
    NORMAL_CLOSE_CODES,
    WS_CLOSE_ABNORMAL,
    WS_CLOSE_GOING_AWAY,
    WS_CLOSE_NORMAL,
)
from .errors import AuthFailure, TransportError
from .events import Signal
from .protocol import FrameCodec
from .types import ConnectionState, ConnectionStatus


class Transport(Protocol):
    """What the connection manager needs from an open push connection.

    ``websockets`` client connections satisfy this protocol.
    """

    def __aiter__(self) -> AsyncIterator[str | bytes]: ...

    async def send(self, message: str) -> None: ...

    async def close(self, code: int = WS_CLOSE_NORMAL, reason: str = "") -> None: ...


TransportFactory = Callable[[str, dict[str, str]], Awaitable[Transport]]


async def open_websocket(url: str, headers: dict[str, str]) -> Transport:
    """Default transport factory backed by ``websockets``.

    Raises:
        AuthFailure: The handshake was rejected with HTTP 401 or 403.
        TransportError: Any other failure to open.
    """
    try:
        return await websockets.asyncio.client.connect(
            url,
            additional_headers=headers,
            max_size=MAX_MESSAGE_SIZE,
            open_timeout=None,  # asyncio.wait_for handles timeout
        )
    except InvalidStatus as exc:
        status = exc.response.status_code
        if status in AUTH_HTTP_STATUSES:
            raise AuthFailure(f"Handshake rejected (HTTP {status})") from exc
        raise TransportError(f"Handshake rejected (HTTP {status})", code=status) from exc
    except (OSError, InvalidHandshake) as exc:
        raise TransportError(f"Failed to connect: {exc}") from exc


def is_auth_close(code: int, reason: str) -> bool:
    if code in AUTH_CLOSE_CODES:
        return True
    lowered = (reason or "").lower()
    return any(marker in lowered for marker in AUTH_REASON_MARKERS)


def _close_details(exc: ConnectionClosed) -> tuple[int, str]:
    rcvd = exc.rcvd
    if rcvd is not None:
        return rcvd.code, rcvd.reason
    return WS_CLOSE_ABNORMAL, ""


class ConnectionManager:
    """Owns the single push connection of one engine instance.

    No exception escapes :meth:`connect`, :meth:`disconnect` or
    :meth:`reconnect`; failures surface as ``status.last_error`` and on
    :attr:`state_changed`.

    Args:
        config: Engine configuration.
        auth: Auth collaborator consulted before every connect attempt.
        transport_factory: Opens a transport for ``(url, headers)``.
            Defaults to :func:`open_websocket`.
        on_message: Called with every raw inbound frame.
        on_session_invalidated: Called with a reason after a terminal
            authentication failure, once ``auth.logout()`` has run.
        clock: Returns epoch seconds.
    """

    def __init__(
        self,
        config: SyncConfig,
        auth: AuthProvider,
        *,
        transport_factory: TransportFactory | None = None,
        on_message: Callable[[str | bytes], Any] | None = None,
        on_session_invalidated: Callable[[str], Any] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._reconnect_cfg = config.reconnect
        self._auth = auth
        self._transport_factory = transport_factory or open_websocket
        self._on_message = on_message
        self._on_session_invalidated = on_session_invalidated
        self._clock = clock
        self._codec = FrameCodec()

        # State
        self._transport: Transport | None = None
        self._state = ConnectionState.DISCONNECTED
        self._retry_count = 0
        self._retry_pending = False
        self._last_error: str | None = None
        self._status = ConnectionStatus(ConnectionState.DISCONNECTED)
        self._generation = 0
        self._credential: str | None = None
        self._resumable = False
        self._session_invalid = False
        self._connected_at: float | None = None
        self._frames_received = 0
        self.state_changed: Signal[ConnectionStatus] = Signal("connection.state_changed")

        # Tasks
        self._recv_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._background_tasks: set[asyncio.Task[Any]] = set()

    def _fire_task(self, coro: Any) -> None:
        """Schedule a coroutine with a strong reference to prevent GC."""
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    # -- Properties -----------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._transport is not None and self._state == ConnectionState.CONNECTED

    @property
    def retry_pending(self) -> bool:
        return self._retry_pending

    # -- Connect / Disconnect -------------------------------------------------

    async def connect(self, credential: str | None = None) -> bool:
        """Open the push connection. Returns True once connected.

        A no-op while connected or connecting. A pending retry is cancelled
        and the retry counter reset.
        """
        if self._state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            return self._state == ConnectionState.CONNECTED
        self._cancel_reconnect()
        self._retry_count = 0
        self._resumable = True
        self._session_invalid = False
        return await self._attempt(credential)

    async def disconnect(self) -> None:
        """Graceful shutdown. No reconnect follows."""
        self._resumable = False
        await self._shutdown(WS_CLOSE_NORMAL, "Manual disconnect")
        self._retry_pending = False
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("Disconnected")

    async def reconnect(self) -> bool:
        """Close the current connection and connect again with the last credential."""
        await self._shutdown(WS_CLOSE_GOING_AWAY, "Reconnecting")
        self._retry_pending = False
        self._retry_count = 0
        self._resumable = True
        self._session_invalid = False
        self._set_state(ConnectionState.DISCONNECTED)
        return await self._attempt(self._credential)

    async def handle_foreground(self) -> bool:
        """Reconnect after the host returns to the foreground.

        Only acts when the connection was lost unintentionally; a manual
        disconnect or an invalidated session stays closed.
        """
        if not self._resumable:
            return False
        if self._state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            return False
        logger.info("Foreground resume, reconnecting")
        self._cancel_reconnect()
        self._retry_pending = False
        self._retry_count = 0
        return await self._attempt(self._credential)

    async def invalidate_session(self, reason: str) -> None:
        """Terminal auth failure reported in-band: close and log out.

        Logs out at most once until the next explicit connect or reconnect.
        """
        if self._session_invalid:
            return
        await self._shutdown(WS_CLOSE_NORMAL, "Session invalidated")
        self._session_invalidated(reason)

    # -- Send -----------------------------------------------------------------

    async def send(self, data: str) -> bool:
        """Send a text frame. Returns True on success."""
        transport = self._transport
        if transport is None or self._state != ConnectionState.CONNECTED:
            logger.warning("Send dropped: not connected")
            return False
        try:
            await transport.send(data)
            return True
        except ConnectionClosed:
            logger.warning("Send failed: connection closed")
            return False
        except Exception as exc:
            logger.warning("Send failed: %s", exc)
            return False

    # -- Internal: open -------------------------------------------------------

    async def _attempt(self, credential: str | None) -> bool:
        if credential is None:
            credential = self._auth.current_credential() or self._credential
        if not credential:
            self._retry_pending = False
            self._last_error = "No credential available"
            self._set_state(ConnectionState.DISCONNECTED)
            logger.warning("Connect skipped: no credential available")
            return False
        self._credential = credential

        try:
            expired = self._auth.is_expired(credential)
        except Exception:
            logger.exception("Credential check failed")
            expired = True
        if expired:
            self._session_invalidated("Session expired")
            return False

        self._generation += 1
        gen = self._generation
        self._retry_pending = False
        self._set_state(ConnectionState.CONNECTING)

        try:
            transport = await asyncio.wait_for(
                self._transport_factory(self._build_url(credential), self._build_headers(credential)),
                timeout=self._config.connect_timeout,
            )
        except AuthFailure as exc:
            if gen != self._generation:
                return False
            self._session_invalidated(str(exc))
            return False
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if gen != self._generation:
                return False
            if isinstance(exc, asyncio.TimeoutError):
                error = f"Connection timed out after {self._config.connect_timeout}s"
            else:
                error = str(exc) or type(exc).__name__
            logger.warning("Connect failed: %s", error)
            # A failed open is treated as an abnormal close
            self._connected_at = None
            self._transient_failure(error)
            return False

        if gen != self._generation:
            logger.debug("Superseded connection opened, closing it")
            self._fire_task(self._close_quietly(transport, WS_CLOSE_NORMAL, "Superseded"))
            return False

        self._transport = transport
        self._connected_at = self._clock()
        self._last_error = None
        self._set_state(ConnectionState.CONNECTED)
        logger.info("Connected")

        self._recv_task = asyncio.create_task(self._recv_loop(transport, gen))
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(transport, gen))
        return True

    # -- Internal: receive loop -----------------------------------------------

    async def _recv_loop(self, transport: Transport, gen: int) -> None:
        """Read frames until the transport closes."""
        try:
            async for message in transport:
                if gen != self._generation:
                    return
                self._frames_received += 1
                self._handle_raw_message(message)
            code = getattr(transport, "close_code", None) or WS_CLOSE_NORMAL
            reason = getattr(transport, "close_reason", None) or ""
        except ConnectionClosed as exc:
            code, reason = _close_details(exc)
        except asyncio.CancelledError:
            return
        except Exception as exc:
            if gen != self._generation:
                return
            logger.warning("Receive loop error: %s", exc)
            self._drop_transport()
            self._last_error = f"Receive error: {exc}"
            self._set_state(ConnectionState.ERROR)
            self._fire_task(self._close_quietly(transport, WS_CLOSE_GOING_AWAY, "Receive error"))
            self._transient_failure(self._last_error)
            return

        if gen != self._generation:
            return
        self._recv_task = None
        self._handle_close_code(code, reason)

    def _handle_raw_message(self, data: str | bytes) -> None:
        if self._on_message is None:
            return
        try:
            self._on_message(data)
        except Exception:
            logger.exception("Message callback failed")

    # -- Internal: heartbeat --------------------------------------------------

    async def _heartbeat_loop(self, transport: Transport, gen: int) -> None:
        """Send a ping every heartbeat interval; optionally detect half-open links."""
        pong_timeout = self._config.pong_timeout
        while True:
            try:
                await asyncio.sleep(self._config.heartbeat_interval)
            except asyncio.CancelledError:
                return
            if gen != self._generation or self._transport is not transport:
                return

            seen = self._frames_received
            ok = await self.send(self._codec.encode_ping(int(self._clock() * 1000)))
            if not ok:
                logger.debug("Ping send failed")
                continue
            if pong_timeout is None:
                continue

            try:
                await asyncio.sleep(pong_timeout)
            except asyncio.CancelledError:
                return
            if gen != self._generation or self._transport is not transport:
                return
            if self._frames_received == seen:
                logger.warning("No frame within %.1fs of ping, reconnecting", pong_timeout)
                self._generation += 1
                self._drop_transport(keep_heartbeat=True)
                self._fire_task(self._close_quietly(transport, WS_CLOSE_GOING_AWAY, "Heartbeat timeout"))
                self._transient_failure("Heartbeat timeout")
                return

    # -- Internal: close handling ---------------------------------------------

    def _handle_close_code(self, code: int, reason: str) -> None:
        """React to a transport close."""
        logger.debug("Connection closed: code=%d reason=%s", code, reason)
        self._drop_transport()
        self._after_close(code, reason)

    def _after_close(self, code: int, reason: str) -> None:
        self._reset_if_stable()

        if code in NORMAL_CLOSE_CODES:
            self._retry_pending = False
            self._set_state(ConnectionState.DISCONNECTED)
            return

        if is_auth_close(code, reason):
            logger.error("Auth failure on close (code %d): %s", code, reason)
            self._session_invalidated(reason or f"Authentication failed (code {code})")
            return

        error = reason or f"Connection closed (code {code})"
        self._schedule_reconnect(error)

    def _transient_failure(self, error: str) -> None:
        """Failed open, receive fault or heartbeat timeout: retry like an abnormal close."""
        self._reset_if_stable()
        self._schedule_reconnect(error)

    def _reset_if_stable(self) -> None:
        if self._connected_at is not None:
            if self._clock() - self._connected_at >= self._reconnect_cfg.stable_after:
                self._retry_count = 0
            self._connected_at = None

    def _session_invalidated(self, reason: str) -> None:
        if self._session_invalid:
            logger.debug("Session already invalidated, ignoring: %s", reason)
            return
        self._session_invalid = True
        self._resumable = False
        self._retry_pending = False
        self._cancel_reconnect()
        self._last_error = reason
        self._set_state(ConnectionState.DISCONNECTED)
        logger.error("Session invalidated: %s", reason)
        try:
            self._auth.logout()
        except Exception:
            logger.exception("Auth logout failed")
        if self._on_session_invalidated is not None:
            try:
                self._on_session_invalidated(reason)
            except Exception:
                logger.exception("Session invalidated callback failed")

    # -- Internal: reconnection -----------------------------------------------

    def _schedule_reconnect(self, error: str) -> None:
        """Arm the fixed-delay retry timer, or give up after the cap."""
        cfg = self._reconnect_cfg
        if self._retry_count >= cfg.max_attempts:
            self._retry_pending = False
            self._last_error = f"Max reconnect attempts ({cfg.max_attempts}) reached"
            logger.error("Max reconnect attempts (%d) reached", cfg.max_attempts)
            self._set_state(ConnectionState.DISCONNECTED)
            return

        self._last_error = error
        self._retry_pending = True
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info(
            "Reconnecting in %.1fs (attempt %d/%d)",
            cfg.delay,
            self._retry_count + 1,
            cfg.max_attempts,
        )
        self._cancel_reconnect()
        self._reconnect_task = asyncio.ensure_future(
            self._reconnect_after(cfg.delay, self._generation)
        )

    async def _reconnect_after(self, delay: float, gen: int) -> None:
        """Wait, then try to reconnect."""
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            return
        if gen != self._generation or not self._retry_pending:
            return
        self._reconnect_task = None
        self._retry_count += 1
        await self._attempt(None)

    def _cancel_reconnect(self) -> None:
        if self._reconnect_task:
            if self._reconnect_task is not asyncio.current_task():
                self._reconnect_task.cancel()
            self._reconnect_task = None

    # -- Internal: teardown ---------------------------------------------------

    def _drop_transport(self, keep_heartbeat: bool = False) -> None:
        self._transport = None
        if self._heartbeat_task and not keep_heartbeat:
            self._heartbeat_task.cancel()
        self._heartbeat_task = None
        self._recv_task = None

    async def _shutdown(self, code: int, reason: str) -> None:
        """Supersede the current attempt and release the transport."""
        self._generation += 1
        self._cancel_reconnect()

        # Cancel tasks first so the receive loop does not see the close
        current = asyncio.current_task()
        tasks_to_await: list[asyncio.Task[Any]] = []
        for task in (self._heartbeat_task, self._recv_task):
            if task is not None and task is not current:
                task.cancel()
                tasks_to_await.append(task)
        self._heartbeat_task = None
        self._recv_task = None
        if tasks_to_await:
            await asyncio.gather(*tasks_to_await, return_exceptions=True)

        transport = self._transport
        self._transport = None
        self._connected_at = None
        if transport is not None:
            await self._close_quietly(transport, code, reason)

    async def _close_quietly(self, transport: Transport, code: int, reason: str) -> None:
        try:
            await transport.close(code, reason)
        except Exception as exc:
            logger.debug("Close failed: %s", exc)

    # -- State management -----------------------------------------------------

    def _set_state(self, new_state: ConnectionState) -> None:
        old = self._state
        self._state = new_state
        status = ConnectionStatus(
            state=new_state,
            retry_count=self._retry_count,
            last_error=self._last_error,
            retry_pending=self._retry_pending,
        )
        if status == self._status:
            return
        self._status = status
        if old != new_state:
            logger.debug("State: %s -> %s", old.value, new_state.value)
        self.state_changed.emit(status)

    # -- URL building ---------------------------------------------------------

    def _build_url(self, credential: str) -> str:
        """Append the credential as a ``token`` query parameter."""
        sep = "&" if "?" in self._config.url else "?"
        return self._config.url + sep + urlencode({"token": credential})

    def _build_headers(self, credential: str) -> dict[str, str]:
        headers = dict(self._config.extra_headers)
        headers["Authorization"] = f"Bearer {credential}"
        return headers
