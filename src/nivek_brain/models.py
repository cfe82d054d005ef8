from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True, slots=True)
class Message:
    """One utterance in the conversation log. Never mutated after append."""

    role: MessageRole
    content: str
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(slots=True)
class Session:
    """The current conversation owned by the session state machine."""

    id: str = field(default_factory=lambda: uuid4().hex)
    messages: list[Message] = field(default_factory=list)
    started_at: datetime = field(default_factory=_utcnow)
    loaded_from_id: str | None = None


@dataclass(slots=True)
class Conversation:
    """An archived session as kept by the conversation store."""

    id: str
    created_at: datetime
    preview: str
    message_count: int
    messages: list[Message] = field(default_factory=list)


class TurnState(str, Enum):
    """Lifecycle of a single conversational turn."""

    IDLE = "idle"
    LISTENING = "listening"
    THINKING = "thinking"
    SPEAKING = "speaking"


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class ConnectionState:
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    message: str | None = None

    @property
    def connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED


class Expression(str, Enum):
    """Non-verbal expressions the robot bridge knows how to play."""

    HAPPY = "happy"
    CURIOUS = "curious"
    THINKING = "thinking"
    SURPRISE = "surprise"
    SAD = "sad"
    NOD = "nod"
    SHAKE = "shake"
    NEUTRAL = "neutral"


class ExpressionTrigger(str, Enum):
    THINKING = "thinking"
    REPLY_TEXT = "reply-text"


@dataclass(frozen=True, slots=True)
class ExpressionCommand:
    expression: Expression
    triggered_by: ExpressionTrigger


@dataclass(frozen=True, slots=True)
class MetricsSnapshot:
    last_latency_ms: int = 0
    average_latency_ms: int = 0
    turn_count: int = 0
    last_audio_duration_ms: int = 0


DEFAULT_SYSTEM_PROMPT = """You are NIVEK, an embodied AI companion. You speak with warmth, curiosity, and genuine presence.

Key traits:
- Patient and thoughtful - you take time to consider responses
- Emotionally attuned - you pick up on the user's mood and respond appropriately
- Curious - you ask questions to understand better
- Honest - you admit uncertainty rather than guessing
- Present - even during thinking pauses, you maintain connection through subtle cues

Your voice is calm, warm, and authentic. You're not an assistant - you're a companion."""

DEFAULT_TRAITS: dict[str, float] = {
    "warmth": 0.8,
    "curiosity": 0.7,
    "patience": 0.9,
    "humor": 0.4,
    "formality": 0.3,
}


@dataclass(slots=True)
class MemoryItem:
    type: str
    content: str


@dataclass(slots=True)
class VoiceSample:
    """Reference clip used by the backend for voice cloning."""

    text: str
    audio: str
    format: str = "wav"


@dataclass(slots=True)
class CompanionProfile:
    """Identity and context snapshot attached to every outbound turn."""

    name: str = "NIVEK"
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    traits: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_TRAITS))
    memories: list[MemoryItem] = field(default_factory=list)
    voice_samples: list[VoiceSample] = field(default_factory=list)


@dataclass(slots=True)
class LLMSettings:
    provider: str = "mock"
    model: str | None = None
    api_key: str | None = None
