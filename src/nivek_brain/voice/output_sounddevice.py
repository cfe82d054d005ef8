"""Speaker playback backed by ``sounddevice``."""

from __future__ import annotations

import asyncio

from nivek_brain.errors import MediaUnavailableError

from .playback import DecodedAudio


class SounddeviceAudioSink:
    """Plays decoded clips on the default (or named) output device."""

    def __init__(self, *, device: str | int | None = None) -> None:
        try:
            import sounddevice as sd
        except (ImportError, OSError) as exc:  # pragma: no cover - import guard
            raise MediaUnavailableError(
                "Audio output backend unavailable. Install extras with: pip install 'nivek-brain[voice]'"
            ) from exc
        self._sd = sd
        self._device = device

    async def play(self, audio: DecodedAudio) -> None:
        await asyncio.to_thread(self._play_blocking, audio)

    async def stop(self) -> None:
        self._sd.stop()

    def _play_blocking(self, audio: DecodedAudio) -> None:
        try:
            self._sd.play(audio.samples, samplerate=audio.sample_rate, device=self._device)
            self._sd.wait()
        except self._sd.PortAudioError as exc:
            raise MediaUnavailableError(f"Audio output failed: {exc}") from exc
