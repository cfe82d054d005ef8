"""CLI startup entrypoint for the NIVEK conversational core."""

from __future__ import annotations

import asyncio
import logging

import typer
from rich import print

from nivek_brain.companion import Companion
from nivek_brain.config import settings
from nivek_brain.errors import MediaUnavailableError
from nivek_brain.models import MessageRole
from nivek_brain.session import MessageAppended, SessionEvent, TurnFailed
from nivek_brain.store import JsonConversationStore
from nivek_brain.voice import NullAudioSink, QueueTranscriptSource

app = typer.Typer(help="NIVEK conversational core")

TURN_TIMEOUT_SECONDS = 120.0


@app.callback()
def main() -> None:
    logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s %(message)s")


def _print_event(event: SessionEvent) -> None:
    match event:
        case MessageAppended(message=message) if message.role == MessageRole.ASSISTANT:
            print({"nivek": message.content})
        case TurnFailed(error=error):
            print({"error": str(error)})


def _build_speaker_sink():
    from nivek_brain.voice.output_sounddevice import SounddeviceAudioSink

    return SounddeviceAudioSink()


@app.command()
def start() -> None:
    """Show runtime configuration."""
    print(
        {
            "app_name": settings.app_name,
            "backend_url": settings.backend_url,
            "robot_enabled": settings.robot_enabled,
            "robot": f"{settings.robot_host}:{settings.robot_port}",
            "llm_provider": settings.llm_provider,
            "llm_model": settings.llm_model,
            "conversation_store_path": settings.conversation_store_path,
        }
    )


@app.command()
def history(limit: int = typer.Option(10, help="How many conversations to list")) -> None:
    """List archived conversations, newest first."""
    store = JsonConversationStore(settings.conversation_store_path, max_conversations=settings.max_conversations)
    print(
        {
            "conversations": [
                {
                    "id": conversation.id,
                    "created_at": conversation.created_at.isoformat(),
                    "preview": conversation.preview,
                    "message_count": conversation.message_count,
                }
                for conversation in store.list_recent(limit)
            ]
        }
    )


@app.command()
def chat(speak: bool = typer.Option(False, help="Play reply audio on the default output device")) -> None:
    """Run a typed conversation; falls back to local replies when the backend is down."""
    sink = NullAudioSink()
    if speak:
        try:
            sink = _build_speaker_sink()
        except MediaUnavailableError as exc:
            print({"error": str(exc)})
            raise typer.Exit(code=1)

    async def _run() -> None:
        source = QueueTranscriptSource()
        async with Companion(source=source, sink=sink) as companion:
            companion.session.subscribe(_print_event)
            print({"chat": "started", "hint": "Type a message; an empty line quits."})
            while True:
                text = await asyncio.to_thread(input, "you> ")
                if not text.strip():
                    break
                if await companion.session.submit_text(text):
                    await companion.session.wait_for_idle(timeout=TURN_TIMEOUT_SECONDS)
            companion.session.clear_session(save_first=True)
            print({"chat": "stopped", "metrics": companion.metrics.snapshot()})

    asyncio.run(_run())


@app.command("voice-chat")
def voice_chat(
    phrase_time_limit: float = typer.Option(5.0, help="Per-utterance capture limit in seconds"),
) -> None:
    """Run a push-to-talk voice loop with microphone and speaker backends."""
    try:
        from nivek_brain.voice.stt_speechrecognition import SpeechRecognitionTranscriptSource

        source = SpeechRecognitionTranscriptSource(
            language=settings.speech_language,
            phrase_time_limit=phrase_time_limit,
        )
        sink = _build_speaker_sink() if settings.audio_output_enabled else NullAudioSink()
    except MediaUnavailableError as exc:
        print({"error": str(exc)})
        raise typer.Exit(code=1)

    async def _run() -> None:
        async with Companion(source=source, sink=sink) as companion:
            companion.session.subscribe(_print_event)
            print({"voice_chat": "started", "hint": "Press Enter to talk; say 'stop listening' to exit."})
            while True:
                await asyncio.to_thread(input, "Press Enter to capture voice (Ctrl+C to quit) ...")
                try:
                    started = await companion.session.start_capture()
                except MediaUnavailableError as exc:
                    print({"error": str(exc)})
                    break
                if not started:
                    continue

                await companion.session.wait_for_idle(timeout=TURN_TIMEOUT_SECONDS)
                user_messages = [m for m in companion.session.messages if m.role == MessageRole.USER]
                if user_messages and "stop listening" in user_messages[-1].content.lower():
                    print({"voice_chat": "stopped"})
                    break

    asyncio.run(_run())


if __name__ == "__main__":
    app()
