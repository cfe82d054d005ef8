"""Contracts for speech capture and audio output."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, AsyncIterator, Protocol

if TYPE_CHECKING:
    from .playback import DecodedAudio


@dataclass(frozen=True, slots=True)
class TranscriptEvent:
    """Interim or final recognition result for one listening cycle."""

    text: str
    is_final: bool


class TranscriptSource(Protocol):
    """Continuous recognition service with interim results."""

    async def start(self) -> None:
        """Begin capture; raises ``MediaUnavailableError`` without a device."""

    async def stop(self) -> None:
        """End capture early."""

    def events(self) -> AsyncIterator[TranscriptEvent]:
        """Yield events for the current cycle; at most one is final."""


class AudioSink(Protocol):
    """Speaker or other output that plays decoded audio to completion."""

    async def play(self, audio: DecodedAudio) -> None:
        """Return once the clip has finished playing."""

    async def stop(self) -> None:
        """Halt whatever is currently playing."""
