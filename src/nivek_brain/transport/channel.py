"""Managed WebSocket lifecycle shared by the backend and robot bridge links."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import AsyncIterator, Awaitable, Callable, Protocol

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from nivek_brain.models import ConnectionState, ConnectionStatus


class WebSocketConnection(Protocol):
    """The slice of a ``websockets`` client connection the channels rely on."""

    async def send(self, message: str) -> None: ...

    async def close(self) -> None: ...

    def __aiter__(self) -> AsyncIterator[str | bytes]: ...


Connector = Callable[[str], Awaitable[WebSocketConnection]]
Sleeper = Callable[[float], Awaitable[None]]
StateListener = Callable[[ConnectionState], None]


async def connect_websocket(url: str) -> WebSocketConnection:
    return await websockets.connect(url)


class ManagedChannel:
    """Owns one WebSocket inside a single supervised task.

    The task connects, reads frames strictly in arrival order (each frame is
    handled to completion before the next is read) and, when a reconnect delay
    is configured, sleeps once and reconnects after every close or failed
    attempt. At most one reconnect is ever pending, and ``close()`` cancels it.
    """

    def __init__(
        self,
        url: str,
        *,
        name: str,
        reconnect_delay_seconds: float | None,
        connector: Connector | None = None,
        sleep: Sleeper | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._url = url
        self._name = name
        self._reconnect_delay_seconds = reconnect_delay_seconds
        self._connect = connector or connect_websocket
        self._sleep = sleep or asyncio.sleep
        self._logger = logger or logging.getLogger(f"nivek_brain.transport.{name}")

        self._state = ConnectionState()
        self._socket: WebSocketConnection | None = None
        self._task: asyncio.Task[None] | None = None
        self._closing = False
        self._reconnect_pending = False
        self._state_listeners: list[StateListener] = []

    @property
    def url(self) -> str:
        return self._url

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state.connected and self._socket is not None

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_pending

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def add_state_listener(self, listener: StateListener) -> Callable[[], None]:
        self._state_listeners.append(listener)

        def _remove() -> None:
            if listener in self._state_listeners:
                self._state_listeners.remove(listener)

        return _remove

    async def open(self) -> None:
        """Start the connection task once for this channel."""
        if self.is_running:
            return

        self._closing = False
        self._task = asyncio.create_task(self._run(), name=f"{self._name}-channel")
        self._logger.info("channel_opened", extra={"channel": self._name, "url": self._url})

    async def close(self) -> None:
        """Close the socket and cancel any pending reconnect."""
        self._closing = True
        task, self._task = self._task, None
        socket, self._socket = self._socket, None

        if socket is not None:
            with contextlib.suppress(ConnectionClosed, OSError):
                await socket.close()

        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._reconnect_pending = False
        self._set_state(ConnectionStatus.DISCONNECTED)
        self._logger.info("channel_closed", extra={"channel": self._name})

    async def send_text(self, text: str) -> bool:
        socket = self._socket
        if socket is None or not self._state.connected:
            return False

        try:
            await socket.send(text)
        except (ConnectionClosed, OSError) as exc:
            self._logger.warning("channel_send_failed", extra={"channel": self._name, "error": str(exc)})
            return False
        return True

    async def _run(self) -> None:
        while not self._closing:
            await self._connect_and_read()
            if self._closing or self._reconnect_delay_seconds is None:
                break

            self._reconnect_pending = True
            self._logger.info(
                "channel_reconnect_scheduled",
                extra={"channel": self._name, "delay_seconds": self._reconnect_delay_seconds},
            )
            try:
                await self._sleep(self._reconnect_delay_seconds)
            finally:
                self._reconnect_pending = False

    async def _connect_and_read(self) -> None:
        self._set_state(ConnectionStatus.CONNECTING)
        try:
            socket = await self._connect(self._url)
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            self._set_state(ConnectionStatus.ERROR, str(exc) or type(exc).__name__)
            self._on_connect_failed(exc)
            return

        self._socket = socket
        self._set_state(ConnectionStatus.CONNECTED)
        self._logger.info("channel_connected", extra={"channel": self._name, "url": self._url})
        try:
            await self._on_open()
            async for frame in socket:
                try:
                    await self._on_frame(frame)
                except Exception:  # noqa: BLE001 - one failing handler must not stop the read loop.
                    self._logger.exception("channel_frame_handler_failed", extra={"channel": self._name})
        except ConnectionClosed as exc:
            self._logger.info("channel_connection_lost", extra={"channel": self._name, "reason": str(exc)})
        finally:
            self._socket = None
            if not self._closing:
                self._set_state(ConnectionStatus.DISCONNECTED)
        # Skipped when close() cancels the task mid-read.
        try:
            await self._on_closed()
        except Exception:  # noqa: BLE001 - the reconnect loop must survive a failing close handler.
            self._logger.exception("channel_close_handler_failed", extra={"channel": self._name})

    def _set_state(self, status: ConnectionStatus, message: str | None = None) -> None:
        state = ConnectionState(status=status, message=message)
        if state == self._state:
            return
        self._state = state
        for listener in list(self._state_listeners):
            listener(state)

    def _on_connect_failed(self, exc: BaseException) -> None:
        self._logger.warning("channel_connect_failed", extra={"channel": self._name, "error": str(exc)})

    async def _on_open(self) -> None:
        """Called once per successful connection, before any frame is read."""

    async def _on_frame(self, frame: str | bytes) -> None:
        raise NotImplementedError

    async def _on_closed(self) -> None:
        """Called after a connection ends on its own (not on ``close()``)."""
