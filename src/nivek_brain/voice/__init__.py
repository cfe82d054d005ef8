"""Voice input and output module boundaries."""

from .input import QueueTranscriptSource
from .interfaces import AudioSink, TranscriptEvent, TranscriptSource
from .playback import AudioPlaybackPipeline, DecodedAudio, NullAudioSink, decode_audio

__all__ = [
    "AudioPlaybackPipeline",
    "AudioSink",
    "DecodedAudio",
    "NullAudioSink",
    "QueueTranscriptSource",
    "TranscriptEvent",
    "TranscriptSource",
    "decode_audio",
]
