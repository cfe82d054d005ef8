"""Turn orchestration for voice conversations with the NIVEK backend.

``SessionStateMachine`` is the only writer of the turn state. It merges
transcript events, backend events and playback completion into one turn at a
time: a ``start_capture()`` while a turn is active is rejected, never queued.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol, Union

from nivek_brain.errors import (
    CompanionError,
    MediaDecodeError,
    MediaUnavailableError,
    RecognitionError,
    SessionBusyError,
    TransportError,
)
from nivek_brain.expressions import ExpressionSynchronizer
from nivek_brain.fallback import generate_fallback_reply
from nivek_brain.metrics import MetricsAggregator
from nivek_brain.models import (
    CompanionProfile,
    Conversation,
    ExpressionCommand,
    LLMSettings,
    Message,
    MessageRole,
    Session,
    TurnState,
)
from nivek_brain.protocol import (
    AudioChunkEvent,
    BackendErrorEvent,
    BackendEvent,
    MessageEnvelope,
    PongEvent,
    ResponseEndEvent,
    ResponseStartEvent,
    ThinkingEvent,
    build_message_envelope,
)
from nivek_brain.store import ConversationStore, InMemoryConversationStore
from nivek_brain.voice.interfaces import TranscriptSource
from nivek_brain.voice.playback import AudioPlaybackPipeline

_ACTIVE_TURN_STATES = (TurnState.THINKING, TurnState.SPEAKING)


class BackendLink(Protocol):
    """What the state machine needs from the primary backend channel."""

    @property
    def is_connected(self) -> bool: ...

    async def send(self, envelope: MessageEnvelope) -> bool: ...

    def set_event_handler(self, handler: Callable[[BackendEvent], Awaitable[None]] | None) -> None: ...

    def set_error_handler(self, handler: Callable[[TransportError], Awaitable[None]] | None) -> None: ...

    def set_disconnect_handler(self, handler: Callable[[], Awaitable[None]] | None) -> None: ...


@dataclass(frozen=True, slots=True)
class StateChanged:
    previous: TurnState
    current: TurnState


@dataclass(frozen=True, slots=True)
class TranscriptUpdated:
    text: str
    is_final: bool


@dataclass(frozen=True, slots=True)
class MessageAppended:
    message: Message


@dataclass(frozen=True, slots=True)
class TurnFailed:
    error: CompanionError


@dataclass(frozen=True, slots=True)
class ExpressionSent:
    command: ExpressionCommand


@dataclass(frozen=True, slots=True)
class SessionReplaced:
    session: Session


SessionEvent = Union[StateChanged, TranscriptUpdated, MessageAppended, TurnFailed, ExpressionSent, SessionReplaced]
SessionListener = Callable[[SessionEvent], None]


class SessionStateMachine:
    """Owns the current session, the turn state and every turn-scoped task."""

    def __init__(
        self,
        *,
        source: TranscriptSource,
        backend: BackendLink,
        playback: AudioPlaybackPipeline,
        expressions: ExpressionSynchronizer,
        metrics: MetricsAggregator,
        store: ConversationStore | None = None,
        profile: CompanionProfile | None = None,
        llm: LLMSettings | None = None,
        tts_enabled: bool = True,
        fallback_delay_seconds: float = 1.5,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        self._source = source
        self._backend = backend
        self._playback = playback
        self._expressions = expressions
        self._metrics = metrics
        self._store = store or InMemoryConversationStore()
        self._profile = profile or CompanionProfile()
        self._llm = llm or LLMSettings()
        self._tts_enabled = tts_enabled
        self._fallback_delay_seconds = fallback_delay_seconds
        self._rng = rng or random.Random()
        self._clock = clock
        self._logger = logger or logging.getLogger("nivek_brain.session")

        self._state = TurnState.IDLE
        self._idle = asyncio.Event()
        self._idle.set()
        self._session = Session()
        self._listeners: list[SessionListener] = []

        self._starting_capture = False
        self._turn_started_at: float | None = None
        self._turn_via_backend = False
        self._capture_task: asyncio.Task[None] | None = None
        self._fallback_task: asyncio.Task[None] | None = None
        self._speech_tasks: set[asyncio.Task[None]] = set()

        backend.set_event_handler(self.handle_backend_event)
        backend.set_error_handler(self.handle_transport_error)
        backend.set_disconnect_handler(self.handle_backend_disconnect)
        playback.on_start(metrics.record_audio_duration)

    # -- observation ---------------------------------------------------------

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def session(self) -> Session:
        return self._session

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._session.messages)

    @property
    def profile(self) -> CompanionProfile:
        return self._profile

    @property
    def llm(self) -> LLMSettings:
        return self._llm

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register a listener for session events; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def wait_for_idle(self, timeout: float | None = None) -> None:
        await asyncio.wait_for(self._idle.wait(), timeout=timeout)

    def update_profile(self, profile: CompanionProfile) -> None:
        self._profile = profile

    def update_llm(self, llm: LLMSettings, *, tts_enabled: bool | None = None) -> None:
        self._llm = llm
        if tts_enabled is not None:
            self._tts_enabled = tts_enabled

    # -- capture -------------------------------------------------------------

    async def start_capture(self) -> bool:
        """Idle -> Listening. Returns False when a turn is already active."""
        if self._state != TurnState.IDLE or self._starting_capture:
            self._logger.info("capture_rejected", extra={"state": self._state.value})
            return False

        self._starting_capture = True
        try:
            await self._source.start()
        except MediaUnavailableError as exc:
            self._logger.warning("capture_unavailable", extra={"error": str(exc)})
            raise
        finally:
            self._starting_capture = False

        if self._state != TurnState.IDLE:
            self._logger.info("capture_rejected", extra={"state": self._state.value})
            await self._source.stop()
            return False

        self._set_state(TurnState.LISTENING)
        self._capture_task = asyncio.create_task(self._consume_transcripts(), name="session-capture")
        return True

    async def stop_capture(self) -> None:
        """Listening -> Idle. Cancels recognition only; has no effect on a sent turn."""
        if self._state != TurnState.LISTENING:
            return

        await self._source.stop()
        # A final transcript may have started the turn while stop() was pending.
        if self._state != TurnState.LISTENING:
            return

        await _cancel(self._capture_task)
        self._capture_task = None
        if self._state == TurnState.LISTENING:
            self._set_state(TurnState.IDLE)

    async def submit_text(self, text: str) -> bool:
        """Start a turn from typed input, bypassing capture."""
        if self._state in _ACTIVE_TURN_STATES or self._starting_capture:
            self._logger.info("text_rejected", extra={"state": self._state.value})
            return False

        stripped = text.strip()
        if not stripped:
            return False

        if self._state == TurnState.LISTENING:
            await self.stop_capture()
            if self._state != TurnState.IDLE:
                self._logger.info("text_rejected", extra={"state": self._state.value})
                return False
        await self._begin_turn(stripped)
        return True

    async def _consume_transcripts(self) -> None:
        final_text: str | None = None
        try:
            async for event in self._source.events():
                self._publish(TranscriptUpdated(text=event.text, is_final=event.is_final))
                if event.is_final:
                    final_text = event.text
                    break
        except (RecognitionError, MediaUnavailableError) as exc:
            self._logger.warning("recognition_failed", extra={"error": str(exc)})
            if self._state == TurnState.LISTENING:
                self._set_state(TurnState.IDLE)
            self._publish(TurnFailed(error=exc))
            return

        if self._state != TurnState.LISTENING:
            return

        text = (final_text or "").strip()
        if not text:
            self._logger.info("transcript_empty")
            self._set_state(TurnState.IDLE)
            return

        await self._begin_turn(text)

    # -- turn lifecycle --------------------------------------------------------

    async def _begin_turn(self, text: str) -> None:
        self._append(MessageRole.USER, text)
        self._turn_started_at = self._clock()
        self._set_state(TurnState.THINKING)
        self._logger.info("turn_started", extra={"chars": len(text)})
        await self._send_expression(self._expressions.on_thinking())

        if self._backend.is_connected:
            envelope = build_message_envelope(
                text,
                profile=self._profile,
                llm=self._llm,
                tts_enabled=self._tts_enabled,
            )
            self._turn_via_backend = True
            if await self._backend.send(envelope):
                return
            self._turn_via_backend = False
            self._logger.warning("turn_send_failed_using_fallback")

        # A turn can already have been failed while send() was suspended.
        if self._state == TurnState.THINKING:
            self._fallback_task = asyncio.create_task(self._fallback_turn(text), name="session-fallback")

    async def _fallback_turn(self, text: str) -> None:
        await asyncio.sleep(self._fallback_delay_seconds)
        if self._state != TurnState.THINKING:
            return

        reply = generate_fallback_reply(text, self._rng)
        self._metrics.record_audio_duration(0)
        self._logger.info("fallback_reply_generated", extra={"chars": len(reply)})
        await self._finish_turn(reply, self._elapsed_ms())

    async def handle_backend_event(self, event: BackendEvent) -> None:
        """Apply one backend event; called in strict arrival order."""
        match event:
            case ThinkingEvent():
                self._logger.debug("backend_thinking", extra={"state": self._state.value})
            case ResponseStartEvent():
                self._logger.debug("backend_response_start", extra={"state": self._state.value})
            case AudioChunkEvent():
                self._on_audio_chunk(event)
            case ResponseEndEvent():
                await self._on_response_end(event)
            case BackendErrorEvent():
                await self._fail_turn(TransportError(event.message))
            case PongEvent():
                pass

    async def handle_transport_error(self, error: TransportError) -> None:
        await self._fail_turn(error)

    async def handle_backend_disconnect(self) -> None:
        if self._turn_via_backend:
            await self._fail_turn(TransportError("Backend connection closed mid-turn"))

    def _on_audio_chunk(self, event: AudioChunkEvent) -> None:
        if self._state not in _ACTIVE_TURN_STATES or not self._turn_via_backend:
            self._logger.debug("audio_chunk_discarded", extra={"state": self._state.value})
            return

        if self._state == TurnState.THINKING:
            self._set_state(TurnState.SPEAKING)
        task = asyncio.create_task(self._speak(event.data, event.sample_rate), name="session-speak")
        self._speech_tasks.add(task)
        task.add_done_callback(self._speech_tasks.discard)

    async def _speak(self, data: str, sample_rate: int) -> None:
        try:
            await self._playback.play(data, sample_rate)
        except MediaDecodeError:
            # Already logged by the pipeline; counts as done speaking.
            return
        except MediaUnavailableError as exc:
            self._logger.warning("playback_unavailable", extra={"error": str(exc)})

    async def _on_response_end(self, event: ResponseEndEvent) -> None:
        if self._state not in _ACTIVE_TURN_STATES or not self._turn_via_backend:
            self._logger.debug("response_end_discarded", extra={"state": self._state.value})
            return

        if self._speech_tasks:
            await asyncio.gather(*list(self._speech_tasks), return_exceptions=True)
            if self._state not in _ACTIVE_TURN_STATES:
                return

        await self._finish_turn(event.text, event.latency_ms or self._elapsed_ms())

    async def _finish_turn(self, reply: str, elapsed_ms: int) -> None:
        self._append(MessageRole.ASSISTANT, reply)
        self._metrics.record_turn(elapsed_ms)
        self._turn_started_at = None
        self._turn_via_backend = False
        self._logger.info("turn_completed", extra={"latency_ms": elapsed_ms, "chars": len(reply)})
        await self._send_expression(self._expressions.on_reply(reply))
        self._set_state(TurnState.IDLE)

    async def _fail_turn(self, error: CompanionError) -> None:
        if self._state not in _ACTIVE_TURN_STATES:
            self._logger.debug("transport_error_outside_turn", extra={"error": str(error)})
            return

        self._logger.warning("turn_failed", extra={"error": str(error), "state": self._state.value})
        self._turn_started_at = None
        self._turn_via_backend = False
        speech_tasks = list(self._speech_tasks)
        fallback_task, self._fallback_task = self._fallback_task, None
        if fallback_task is not None and not fallback_task.done():
            fallback_task.cancel()
        self._set_state(TurnState.IDLE)
        if speech_tasks:
            await self._playback.stop()
            for task in speech_tasks:
                await _cancel(task)
        self._publish(TurnFailed(error=error))

    async def _send_expression(self, pending: Awaitable[ExpressionCommand | None]) -> None:
        command = await pending
        if command is not None:
            self._publish(ExpressionSent(command=command))

    # -- session management ----------------------------------------------------

    def new_session(self) -> Session:
        """Start an empty session without archiving the current one."""
        self._ensure_idle()
        return self._replace_session(Session())

    def clear_session(self, *, save_first: bool = True) -> Conversation | None:
        """Archive the current session (optionally) and start an empty one."""
        self._ensure_idle()
        archived = self._store.save(list(self._session.messages)) if save_first else None
        self._replace_session(Session())
        return archived

    def load_conversation(self, conversation_id: str) -> Session:
        """Replace the current session with an archived conversation."""
        self._ensure_idle()
        conversation = self._store.get(conversation_id)
        if self._session.messages:
            self._store.save(list(self._session.messages))
        return self._replace_session(
            Session(
                id=conversation.id,
                messages=list(conversation.messages),
                started_at=conversation.created_at,
                loaded_from_id=conversation.id,
            )
        )

    def recent_conversations(self, limit: int = 5) -> list[Conversation]:
        return self._store.list_recent(limit)

    async def close(self) -> None:
        """Cancel every task owned by the session and return to Idle."""
        tasks = [self._capture_task, self._fallback_task, *self._speech_tasks]
        self._capture_task = None
        self._fallback_task = None
        for task in tasks:
            await _cancel(task)
        if self._state == TurnState.LISTENING:
            await self._source.stop()
        if self._playback.is_playing:
            await self._playback.stop()
        self._turn_via_backend = False
        self._set_state(TurnState.IDLE)

    # -- internals -------------------------------------------------------------

    def _ensure_idle(self) -> None:
        if self._state != TurnState.IDLE:
            raise SessionBusyError(f"Session is busy ({self._state.value})")

    def _replace_session(self, session: Session) -> Session:
        self._session = session
        self._logger.info(
            "session_replaced",
            extra={"session_id": session.id, "loaded_from_id": session.loaded_from_id},
        )
        self._publish(SessionReplaced(session=session))
        return session

    def _append(self, role: MessageRole, content: str) -> Message:
        message = Message(role=role, content=content)
        self._session.messages.append(message)
        self._publish(MessageAppended(message=message))
        return message

    def _elapsed_ms(self) -> int:
        if self._turn_started_at is None:
            return 0
        return round((self._clock() - self._turn_started_at) * 1000)

    def _set_state(self, state: TurnState) -> None:
        if state == self._state:
            return

        previous, self._state = self._state, state
        if state == TurnState.IDLE:
            self._idle.set()
        else:
            self._idle.clear()
        self._logger.info("turn_state_changed", extra={"previous": previous.value, "current": state.value})
        self._publish(StateChanged(previous=previous, current=state))

    def _publish(self, event: SessionEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:  # noqa: BLE001 - a broken listener must not break the turn.
                self._logger.exception("session_listener_failed", extra={"event": type(event).__name__})


async def _cancel(task: asyncio.Task[Any] | None) -> None:
    if task is None or task.done():
        return
    if task is asyncio.current_task():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
