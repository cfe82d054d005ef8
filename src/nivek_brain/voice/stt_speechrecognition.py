"""Microphone transcript source powered by ``speech_recognition``."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator

from nivek_brain.errors import MediaUnavailableError, RecognitionError

from .interfaces import TranscriptEvent


class SpeechRecognitionTranscriptSource:
    """Capture one utterance per cycle and emit it as a single final event.

    ``speech_recognition`` has no interim results, so each cycle yields at most
    one event. Blocking capture and recognition run in worker threads.
    """

    def __init__(
        self,
        *,
        language: str = "en-US",
        phrase_time_limit: float = 5.0,
        timeout: float | None = None,
        sample_rate: int = 16_000,
        chunk_size: int = 1024,
        adjust_noise_seconds: float = 0.2,
        logger: logging.Logger | None = None,
    ) -> None:
        try:
            import speech_recognition as sr
        except ImportError as exc:  # pragma: no cover - import guard
            raise MediaUnavailableError(
                "Speech recognition backend unavailable. Install extras with: pip install 'nivek-brain[voice]'"
            ) from exc
        self._sr = sr
        self._recognizer = sr.Recognizer()
        self._language = language
        self._phrase_time_limit = phrase_time_limit
        self._timeout = timeout
        self._sample_rate = sample_rate
        self._chunk_size = chunk_size
        self._adjust_noise_seconds = max(0.0, adjust_noise_seconds)
        self._logger = logger or logging.getLogger("nivek_brain.voice.stt")
        self._microphone: Any = None
        self._stopped = True

    async def start(self) -> None:
        if self._microphone is None:
            try:
                self._microphone = self._sr.Microphone(sample_rate=self._sample_rate, chunk_size=self._chunk_size)
            except (AttributeError, OSError) as exc:
                # AttributeError is how speech_recognition reports a missing PyAudio.
                raise MediaUnavailableError(f"Microphone unavailable: {exc}") from exc
        self._stopped = False

    async def stop(self) -> None:
        self._stopped = True

    async def events(self) -> AsyncIterator[TranscriptEvent]:
        audio = await asyncio.to_thread(self._listen)
        if audio is None or self._stopped:
            return

        text = await asyncio.to_thread(self._recognize, audio)
        if self._stopped:
            return
        yield TranscriptEvent(text=text, is_final=True)

    def _listen(self) -> Any:
        try:
            with self._microphone as source:
                if self._adjust_noise_seconds > 0:
                    self._recognizer.adjust_for_ambient_noise(source, duration=self._adjust_noise_seconds)
                return self._recognizer.listen(
                    source,
                    timeout=self._timeout,
                    phrase_time_limit=self._phrase_time_limit,
                )
        except self._sr.WaitTimeoutError:
            return None
        except OSError as exc:
            raise RecognitionError(f"Microphone capture failed: {exc}") from exc

    def _recognize(self, audio: Any) -> str:
        try:
            return self._recognizer.recognize_google(audio, language=self._language)
        except self._sr.UnknownValueError:
            return ""
        except self._sr.RequestError as exc:
            raise RecognitionError(
                "Speech recognition service request failed. Check internet access or switch STT backend."
            ) from exc
