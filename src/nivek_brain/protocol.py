"""Wire envelopes for the backend and robot bridge channels.

Inbound frames are parsed into closed, ``type``-discriminated unions so that
consumers can ``match`` over every kind a channel may deliver.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from nivek_brain.errors import TransportError
from nivek_brain.models import CompanionProfile, Expression, LLMSettings


class _Envelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


# -- client -> backend ------------------------------------------------------


class TurnContext(_Envelope):
    system_prompt: str = Field(default="", alias="systemPrompt")
    memories: str = ""
    traits: dict[str, float] = Field(default_factory=dict)


class LLMOptions(_Envelope):
    provider: str = "mock"
    model: str | None = None
    api_key: str | None = Field(default=None, alias="apiKey")


class VoiceSamplePayload(_Envelope):
    text: str
    audio: str
    format: str


class MessageEnvelope(_Envelope):
    type: Literal["message"] = "message"
    text: str
    mock_audio: bool = False
    context: TurnContext = Field(default_factory=TurnContext)
    llm: LLMOptions = Field(default_factory=LLMOptions)
    voice_samples: list[VoiceSamplePayload] = Field(default_factory=list)


class PingEnvelope(_Envelope):
    type: Literal["ping"] = "ping"


def build_message_envelope(
    text: str,
    *,
    profile: CompanionProfile,
    llm: LLMSettings,
    tts_enabled: bool = True,
) -> MessageEnvelope:
    """Snapshot identity, memories and LLM options into a turn envelope."""
    memories = "\n".join(f"{memory.type}: {memory.content}" for memory in profile.memories)
    return MessageEnvelope(
        text=text,
        mock_audio=not tts_enabled,
        context=TurnContext(
            system_prompt=profile.system_prompt,
            memories=memories,
            traits=dict(profile.traits),
        ),
        llm=LLMOptions(provider=llm.provider or "mock", model=llm.model, api_key=llm.api_key),
        voice_samples=[
            VoiceSamplePayload(text=sample.text, audio=sample.audio, format=sample.format)
            for sample in profile.voice_samples
        ],
    )


# -- backend -> client ------------------------------------------------------


class ThinkingEvent(BaseModel):
    type: Literal["thinking"]


class ResponseStartEvent(BaseModel):
    type: Literal["response_start"]


class AudioChunkEvent(BaseModel):
    type: Literal["audio_chunk"]
    data: str
    sample_rate: int = 24_000


class ResponseEndEvent(BaseModel):
    type: Literal["response_end"]
    text: str = ""
    latency_ms: int | None = None


class BackendErrorEvent(BaseModel):
    type: Literal["error"]
    message: str = "Unknown backend error"


class PongEvent(BaseModel):
    type: Literal["pong"]


BackendEvent = Annotated[
    Union[ThinkingEvent, ResponseStartEvent, AudioChunkEvent, ResponseEndEvent, BackendErrorEvent, PongEvent],
    Field(discriminator="type"),
]

_BACKEND_EVENTS: TypeAdapter[BackendEvent] = TypeAdapter(BackendEvent)


def parse_backend_event(raw: str | bytes) -> BackendEvent:
    """Parse one backend frame, raising ``TransportError`` on anything malformed."""
    try:
        return _BACKEND_EVENTS.validate_json(raw)
    except ValidationError as exc:
        raise TransportError(f"Malformed backend frame: {_describe(exc)}") from exc


# -- client <-> robot bridge ------------------------------------------------


class GetInfoCommand(_Envelope):
    type: Literal["get_info"] = "get_info"


class PlayExpressionCommand(_Envelope):
    type: Literal["play_expression"] = "play_expression"
    expression: Expression


class RobotInfo(BaseModel):
    name: str | None = None
    version: str | None = None
    mode: str | None = None


class RobotInfoEvent(BaseModel):
    type: Literal["info"]
    info: RobotInfo = Field(default_factory=RobotInfo)


class RobotStateEvent(BaseModel):
    type: Literal["state"]
    motors: dict[str, Any] | None = None
    head: dict[str, Any] | None = None
    antennas: dict[str, Any] | None = None
    body_yaw: float | None = None


class RobotErrorEvent(BaseModel):
    type: Literal["error"]
    message: str = "Unknown robot error"


PeripheralEvent = Annotated[
    Union[RobotInfoEvent, RobotStateEvent, RobotErrorEvent],
    Field(discriminator="type"),
]

_PERIPHERAL_EVENTS: TypeAdapter[PeripheralEvent] = TypeAdapter(PeripheralEvent)


def parse_peripheral_event(raw: str | bytes) -> PeripheralEvent:
    try:
        return _PERIPHERAL_EVENTS.validate_json(raw)
    except ValidationError as exc:
        raise TransportError(f"Malformed robot frame: {_describe(exc)}") from exc


def _describe(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "frame"
    return f"{location}: {first.get('msg', 'invalid')}"
