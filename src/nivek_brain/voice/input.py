"""In-process transcript source for typed input and tests."""

from __future__ import annotations

import asyncio
from typing import AsyncIterator

from nivek_brain.errors import MediaUnavailableError, RecognitionError

from .interfaces import TranscriptEvent

_END_OF_CYCLE = None


class QueueTranscriptSource:
    """Transcript source fed programmatically with ``push``/``fail``/``finish``.

    Every ``start()`` opens a fresh recognition cycle, so events pushed for an
    earlier cycle can never leak into the next turn.
    """

    def __init__(self, *, available: bool = True) -> None:
        self._available = available
        self._queue: asyncio.Queue[TranscriptEvent | BaseException | None] = asyncio.Queue()
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    async def start(self) -> None:
        if not self._available:
            raise MediaUnavailableError("No capture device is available")
        self._queue = asyncio.Queue()
        self._active = True

    async def stop(self) -> None:
        if self._active:
            self._active = False
            self._queue.put_nowait(_END_OF_CYCLE)

    def push(self, text: str, *, is_final: bool = True) -> None:
        self._queue.put_nowait(TranscriptEvent(text=text, is_final=is_final))

    def fail(self, error: BaseException | str) -> None:
        if isinstance(error, str):
            error = RecognitionError(error)
        self._queue.put_nowait(error)

    def finish(self) -> None:
        self._queue.put_nowait(_END_OF_CYCLE)

    async def events(self) -> AsyncIterator[TranscriptEvent]:
        queue = self._queue
        try:
            while True:
                item = await queue.get()
                if item is _END_OF_CYCLE:
                    return
                if isinstance(item, BaseException):
                    raise item
                yield item
                if item.is_final:
                    return
        finally:
            self._active = False
