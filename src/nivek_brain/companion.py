"""Wires channels, playback, expressions and metrics into one session."""

from __future__ import annotations

import logging

from nivek_brain.config import Settings, settings
from nivek_brain.expressions import ExpressionSynchronizer
from nivek_brain.metrics import MetricsAggregator
from nivek_brain.models import CompanionProfile, LLMSettings
from nivek_brain.session import SessionStateMachine
from nivek_brain.store import ConversationStore, JsonConversationStore
from nivek_brain.transport import BackendChannel, PeripheralChannel, robot_url
from nivek_brain.transport.channel import Connector
from nivek_brain.voice.interfaces import AudioSink, TranscriptSource
from nivek_brain.voice.playback import AudioPlaybackPipeline, NullAudioSink


class Companion:
    """Owns every long-lived component for the lifetime of one session.

    Channels are opened by ``start()`` and torn down, together with all
    turn-scoped tasks, by ``stop()``.
    """

    def __init__(
        self,
        *,
        source: TranscriptSource,
        sink: AudioSink | None = None,
        config: Settings | None = None,
        store: ConversationStore | None = None,
        profile: CompanionProfile | None = None,
        backend_connector: Connector | None = None,
        robot_connector: Connector | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config or settings
        self._robot_connector = robot_connector
        self._logger = logger or logging.getLogger("nivek_brain.companion")

        self.backend = BackendChannel(
            self.config.backend_url,
            reconnect_delay_seconds=self.config.backend_reconnect_seconds,
            connector=backend_connector,
        )
        self.peripheral: PeripheralChannel | None = None
        self.metrics = MetricsAggregator()
        self.expressions = ExpressionSynchronizer(enabled=self.config.robot_sync_with_chat)
        self.playback = AudioPlaybackPipeline(sink or NullAudioSink())
        self.session = SessionStateMachine(
            source=source,
            backend=self.backend,
            playback=self.playback,
            expressions=self.expressions,
            metrics=self.metrics,
            store=store
            or JsonConversationStore(
                self.config.conversation_store_path,
                max_conversations=self.config.max_conversations,
            ),
            profile=profile,
            llm=LLMSettings(
                provider=self.config.llm_provider,
                model=self.config.llm_model,
                api_key=self.config.llm_api_key,
            ),
            tts_enabled=self.config.tts_enabled,
            fallback_delay_seconds=self.config.fallback_think_seconds,
        )

    async def start(self) -> None:
        await self.backend.open()
        if self.config.robot_enabled:
            await self._open_peripheral(self.config.robot_host, self.config.robot_port)
        self._logger.info(
            "companion_started",
            extra={"backend_url": self.config.backend_url, "robot_enabled": self.config.robot_enabled},
        )

    async def stop(self) -> None:
        await self.session.close()
        await self.backend.close()
        await self._close_peripheral()
        self._logger.info("companion_stopped")

    async def reconfigure_peripheral(self, *, host: str, port: int, enabled: bool, sync_with_chat: bool = True) -> None:
        """Replace the robot link; any pending retry on the old one is cancelled."""
        await self._close_peripheral()
        self.expressions.enabled = sync_with_chat
        if enabled:
            await self._open_peripheral(host, port)

    async def __aenter__(self) -> Companion:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    async def _open_peripheral(self, host: str, port: int) -> None:
        self.peripheral = PeripheralChannel(
            robot_url(host, port),
            reconnect_delay_seconds=self.config.robot_reconnect_seconds,
            connector=self._robot_connector,
        )
        self.expressions.attach(self.peripheral)
        await self.peripheral.open()

    async def _close_peripheral(self) -> None:
        peripheral, self.peripheral = self.peripheral, None
        self.expressions.attach(None)
        if peripheral is not None:
            await peripheral.close()
