"""Best-effort link to the robot bridge that plays non-verbal expressions.

The robot is optional: failures here are logged at debug level and never
surfaced, and the channel keeps reconnecting until it is closed.
"""

from __future__ import annotations

import logging
from typing import Any

from nivek_brain.errors import TransportError
from nivek_brain.models import Expression
from nivek_brain.protocol import (
    GetInfoCommand,
    PlayExpressionCommand,
    RobotErrorEvent,
    RobotInfo,
    RobotInfoEvent,
    RobotStateEvent,
    parse_peripheral_event,
)
from nivek_brain.transport.channel import Connector, ManagedChannel, Sleeper


def robot_url(host: str, port: int) -> str:
    return f"ws://{host}:{port}/robot"


class PeripheralChannel(ManagedChannel):
    def __init__(
        self,
        url: str,
        *,
        reconnect_delay_seconds: float = 5.0,
        connector: Connector | None = None,
        sleep: Sleeper | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(
            url,
            name="peripheral",
            reconnect_delay_seconds=reconnect_delay_seconds,
            connector=connector,
            sleep=sleep,
            logger=logger,
        )
        self.info: RobotInfo | None = None
        self.robot_state: dict[str, Any] = {}
        self.last_error: str | None = None

    async def play_expression(self, expression: Expression) -> bool:
        """Fire-and-forget; returns whether the command left the client."""
        if not self.is_connected:
            self._logger.debug("expression_dropped", extra={"expression": expression.value})
            return False
        return await self.send_text(PlayExpressionCommand(expression=expression).to_json())

    async def _on_open(self) -> None:
        self.last_error = None
        await self.send_text(GetInfoCommand().to_json())

    async def _on_frame(self, frame: str | bytes) -> None:
        try:
            event = parse_peripheral_event(frame)
        except TransportError as exc:
            self._logger.debug("robot_frame_malformed", extra={"error": str(exc)})
            return

        match event:
            case RobotInfoEvent(info=info):
                self.info = info
                self._logger.info(
                    "robot_info",
                    extra={"robot_name": info.name, "robot_version": info.version, "robot_mode": info.mode},
                )
            case RobotStateEvent():
                self.robot_state.update(event.model_dump(exclude={"type"}, exclude_none=True))
            case RobotErrorEvent(message=message):
                self.last_error = message
                self._logger.debug("robot_error", extra={"robot_error": message})

    def _on_connect_failed(self, exc: BaseException) -> None:
        self._logger.debug("robot_connect_failed", extra={"error": str(exc)})
