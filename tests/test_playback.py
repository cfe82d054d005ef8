from __future__ import annotations

import asyncio
import base64
import io

import numpy as np
import pytest
import soundfile as sf

from nivek_brain.errors import MediaDecodeError
from nivek_brain.voice import AudioPlaybackPipeline, DecodedAudio, NullAudioSink, decode_audio


def _wav_payload(seconds: float, sample_rate: int = 16000) -> str:
    buffer = io.BytesIO()
    sf.write(buffer, np.zeros(int(seconds * sample_rate), dtype=np.float32), sample_rate, format="WAV")
    return base64.b64encode(buffer.getvalue()).decode("ascii")


def _pcm_payload(frames: int) -> str:
    return base64.b64encode(b"\x00\x00" * frames).decode("ascii")


class RecordingSink:
    def __init__(self) -> None:
        self.log: list[str] = []
        self.stopped = False

    async def play(self, audio: DecodedAudio) -> None:
        self.log.append(f"start:{audio.duration_ms}")
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        self.log.append(f"end:{audio.duration_ms}")

    async def stop(self) -> None:
        self.stopped = True


def test_wav_payload_keeps_its_own_sample_rate() -> None:
    audio = decode_audio(_wav_payload(0.5, sample_rate=16000), 24000)

    assert audio.sample_rate == 16000
    assert audio.duration_ms == 500


def test_raw_pcm_uses_declared_sample_rate() -> None:
    audio = decode_audio(_pcm_payload(24000), 24000)

    assert audio.sample_rate == 24000
    assert audio.frames == 24000
    assert audio.duration_ms == 1000


@pytest.mark.parametrize("payload", ["%%% not base64 %%%", "", base64.b64encode(b"\x01\x02\x03").decode("ascii")])
def test_undecodable_payloads_raise_media_decode_error(payload: str) -> None:
    with pytest.raises(MediaDecodeError):
        decode_audio(payload, 24000)


def test_playback_is_serialized_and_reports_duration() -> None:
    sink = RecordingSink()
    pipeline = AudioPlaybackPipeline(sink)
    started: list[int] = []
    ended: list[int] = []
    pipeline.on_start(started.append)
    pipeline.on_end(ended.append)

    async def _run() -> list[int]:
        return list(
            await asyncio.gather(
                pipeline.play(_pcm_payload(2400), 24000),
                pipeline.play(_pcm_payload(4800), 24000),
            )
        )

    durations = asyncio.run(_run())

    assert durations == [100, 200]
    assert sink.log == ["start:100", "end:100", "start:200", "end:200"]
    assert started == [100, 200]
    assert ended == [100, 200]
    assert pipeline.last_duration_ms == 200
    assert pipeline.is_playing is False


def test_decode_failure_propagates_without_touching_the_sink() -> None:
    sink = NullAudioSink()
    pipeline = AudioPlaybackPipeline(sink)

    with pytest.raises(MediaDecodeError):
        asyncio.run(pipeline.play("", 24000))

    assert sink.played == []
