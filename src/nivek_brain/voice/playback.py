"""Decode inbound audio payloads and play them one at a time."""

from __future__ import annotations

import asyncio
import base64
import binascii
import io
import logging
import math
from dataclasses import dataclass
from typing import Callable

import numpy as np
import soundfile as sf

from nivek_brain.errors import MediaDecodeError

from .interfaces import AudioSink


@dataclass(frozen=True, slots=True)
class DecodedAudio:
    samples: np.ndarray
    sample_rate: int

    @property
    def frames(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration_ms(self) -> int:
        return math.floor(self.frames / self.sample_rate * 1000 + 0.5)


def decode_audio(payload: str | bytes, sample_rate: int) -> DecodedAudio:
    """Decode a base64 (or raw bytes) payload into float32 samples.

    Container formats (WAV, FLAC, OGG) are read with soundfile and keep their
    own rate. Anything else is treated as mono 16-bit little-endian PCM at
    ``sample_rate``.
    """
    if isinstance(payload, str):
        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise MediaDecodeError(f"Audio payload is not valid base64: {exc}") from exc
    else:
        raw = bytes(payload)

    if not raw:
        raise MediaDecodeError("Audio payload is empty")

    try:
        samples, rate = sf.read(io.BytesIO(raw), dtype="float32")
    except (RuntimeError, TypeError):
        samples, rate = _decode_raw_pcm(raw, sample_rate), sample_rate

    if samples.size == 0:
        raise MediaDecodeError("Audio payload contains no samples")
    return DecodedAudio(samples=samples, sample_rate=int(rate))


def _decode_raw_pcm(raw: bytes, sample_rate: int) -> np.ndarray:
    if sample_rate <= 0:
        raise MediaDecodeError(f"Invalid sample rate for raw PCM: {sample_rate}")
    if len(raw) % 2:
        raise MediaDecodeError("Raw PCM payload has an odd number of bytes")
    return np.frombuffer(raw, dtype="<i2").astype(np.float32) / 32768.0


class NullAudioSink:
    """Sink used when audio output is disabled; finishes immediately."""

    def __init__(self) -> None:
        self.played: list[DecodedAudio] = []

    async def play(self, audio: DecodedAudio) -> None:
        self.played.append(audio)

    async def stop(self) -> None:
        return None


PlaybackHook = Callable[[int], None]


class AudioPlaybackPipeline:
    """Serializes playback so clips never overlap, even across turns."""

    def __init__(
        self,
        sink: AudioSink,
        *,
        decoder: Callable[[str | bytes, int], DecodedAudio] = decode_audio,
        logger: logging.Logger | None = None,
    ) -> None:
        self._sink = sink
        self._decoder = decoder
        self._logger = logger or logging.getLogger("nivek_brain.voice.playback")
        self._lock = asyncio.Lock()
        self._playing = False
        self._start_hooks: list[PlaybackHook] = []
        self._end_hooks: list[PlaybackHook] = []
        self.last_duration_ms = 0

    @property
    def is_playing(self) -> bool:
        return self._playing

    def on_start(self, hook: PlaybackHook) -> None:
        self._start_hooks.append(hook)

    def on_end(self, hook: PlaybackHook) -> None:
        self._end_hooks.append(hook)

    async def play(self, payload: str | bytes, sample_rate: int) -> int:
        """Decode, play to completion and return the measured duration in ms."""
        try:
            audio = self._decoder(payload, sample_rate)
        except MediaDecodeError as exc:
            self._logger.warning("audio_decode_failed", extra={"error": str(exc)})
            raise

        self.last_duration_ms = audio.duration_ms
        async with self._lock:
            self._playing = True
            self._logger.info(
                "playback_started",
                extra={"duration_ms": audio.duration_ms, "sample_rate": audio.sample_rate},
            )
            for hook in self._start_hooks:
                hook(audio.duration_ms)
            try:
                await self._sink.play(audio)
            finally:
                self._playing = False
                for hook in self._end_hooks:
                    hook(audio.duration_ms)
                self._logger.info("playback_finished", extra={"duration_ms": audio.duration_ms})
        return audio.duration_ms

    async def stop(self) -> None:
        await self._sink.stop()
