"""Primary request/response link to the inference backend."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from nivek_brain.errors import TransportError
from nivek_brain.protocol import BackendEvent, MessageEnvelope, PingEnvelope, PongEvent, parse_backend_event
from nivek_brain.transport.channel import Connector, ManagedChannel, Sleeper

BackendEventHandler = Callable[[BackendEvent], Awaitable[None]]
TransportErrorHandler = Callable[[TransportError], Awaitable[None]]
DisconnectHandler = Callable[[], Awaitable[None]]


class BackendChannel(ManagedChannel):
    """Sends turn envelopes and delivers typed backend events in arrival order."""

    def __init__(
        self,
        url: str,
        *,
        reconnect_delay_seconds: float | None = 2.0,
        connector: Connector | None = None,
        sleep: Sleeper | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(
            url,
            name="backend",
            reconnect_delay_seconds=reconnect_delay_seconds,
            connector=connector,
            sleep=sleep,
            logger=logger,
        )
        self._event_handler: BackendEventHandler | None = None
        self._error_handler: TransportErrorHandler | None = None
        self._disconnect_handler: DisconnectHandler | None = None

    def set_event_handler(self, handler: BackendEventHandler | None) -> None:
        self._event_handler = handler

    def set_error_handler(self, handler: TransportErrorHandler | None) -> None:
        self._error_handler = handler

    def set_disconnect_handler(self, handler: DisconnectHandler | None) -> None:
        self._disconnect_handler = handler

    async def send(self, envelope: MessageEnvelope) -> bool:
        """Send a turn envelope; a no-op returning False unless connected."""
        if not self.is_connected:
            self._logger.info("backend_send_skipped", extra={"status": self.state.status.value})
            return False

        sent = await self.send_text(envelope.to_json())
        if sent:
            self._logger.info("backend_turn_sent", extra={"chars": len(envelope.text)})
        return sent

    async def ping(self) -> bool:
        return await self.send_text(PingEnvelope().to_json())

    async def _on_frame(self, frame: str | bytes) -> None:
        try:
            event = parse_backend_event(frame)
        except TransportError as exc:
            self._logger.warning("backend_frame_malformed", extra={"error": str(exc)})
            if self._error_handler is not None:
                await self._error_handler(exc)
            return

        if isinstance(event, PongEvent):
            self._logger.debug("backend_pong")
            return

        if self._event_handler is not None:
            await self._event_handler(event)

    async def _on_closed(self) -> None:
        if self._disconnect_handler is not None:
            await self._disconnect_handler()
