from __future__ import annotations

import asyncio
import json

from nivek_brain.errors import TransportError
from nivek_brain.models import ConnectionStatus, Expression
from nivek_brain.protocol import MessageEnvelope
from nivek_brain.transport import BackendChannel, PeripheralChannel


class FakeSocket:
    def __init__(self, frames: tuple[str, ...] = ()) -> None:
        self.sent: list[str] = []
        self.closed = False
        self._incoming: asyncio.Queue[str | None] = asyncio.Queue()
        for frame in frames:
            self._incoming.put_nowait(frame)

    async def send(self, message: str) -> None:
        self.sent.append(message)

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(None)

    def feed(self, frame: str) -> None:
        self._incoming.put_nowait(frame)

    def hang_up(self) -> None:
        self._incoming.put_nowait(None)

    def __aiter__(self) -> FakeSocket:
        return self

    async def __anext__(self) -> str:
        frame = await self._incoming.get()
        if frame is None:
            raise StopAsyncIteration
        return frame


class FakeConnector:
    def __init__(self, outcomes: list) -> None:
        self._outcomes = list(outcomes)
        self.urls: list[str] = []

    @property
    def calls(self) -> int:
        return len(self.urls)

    async def __call__(self, url: str):
        self.urls.append(url)
        outcome = self._outcomes.pop(0) if self._outcomes else OSError("connection refused")
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class GatedSleep:
    """Records reconnect delays and only returns when released."""

    def __init__(self) -> None:
        self.delays: list[float] = []
        self._gate = asyncio.Event()

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await self._gate.wait()
        self._gate.clear()

    def release(self) -> None:
        self._gate.set()


async def _settle() -> None:
    for _ in range(20):
        await asyncio.sleep(0)


def test_backend_send_is_noop_when_disconnected() -> None:
    async def _run() -> bool:
        channel = BackendChannel("ws://backend/ws", connector=FakeConnector([]))
        return await channel.send(MessageEnvelope(text="hello"))

    assert asyncio.run(_run()) is False


def test_backend_delivers_events_in_arrival_order() -> None:
    async def _run() -> tuple[list[str], list[str]]:
        socket = FakeSocket(
            (
                '{"type": "thinking"}',
                '{"type": "response_start"}',
                '{"type": "pong"}',
                '{"type": "audio_chunk", "data": "AAAA", "sample_rate": 24000}',
                '{"type": "response_end", "text": "done", "latency_ms": 12}',
            )
        )
        channel = BackendChannel("ws://backend/ws", reconnect_delay_seconds=None, connector=FakeConnector([socket]))
        seen: list[str] = []

        async def _handler(event) -> None:
            await asyncio.sleep(0)
            seen.append(event.type)

        channel.set_event_handler(_handler)
        await channel.open()
        await _settle()
        sent = await channel.send(MessageEnvelope(text="hello"))
        assert sent is True
        await channel.close()
        return seen, socket.sent

    seen, sent = asyncio.run(_run())
    assert seen == ["thinking", "response_start", "audio_chunk", "response_end"]
    assert json.loads(sent[0])["type"] == "message"


def test_backend_reports_malformed_frames_and_keeps_reading() -> None:
    async def _run() -> tuple[list[TransportError], list[str]]:
        socket = FakeSocket(("{broken", '{"type": "thinking"}'))
        channel = BackendChannel("ws://backend/ws", reconnect_delay_seconds=None, connector=FakeConnector([socket]))
        errors: list[TransportError] = []
        seen: list[str] = []

        async def _on_error(error: TransportError) -> None:
            errors.append(error)

        async def _on_event(event) -> None:
            seen.append(event.type)

        channel.set_error_handler(_on_error)
        channel.set_event_handler(_on_event)
        await channel.open()
        await _settle()
        await channel.close()
        return errors, seen

    errors, seen = asyncio.run(_run())
    assert len(errors) == 1
    assert seen == ["thinking"]


def test_backend_notifies_disconnect_when_socket_closes() -> None:
    async def _run() -> tuple[int, ConnectionStatus]:
        socket = FakeSocket()
        channel = BackendChannel("ws://backend/ws", reconnect_delay_seconds=None, connector=FakeConnector([socket]))
        disconnects: list[int] = []

        async def _on_disconnect() -> None:
            disconnects.append(1)

        channel.set_disconnect_handler(_on_disconnect)
        await channel.open()
        await _settle()
        socket.hang_up()
        await _settle()
        status = channel.state.status
        await channel.close()
        return len(disconnects), status

    count, status = asyncio.run(_run())
    assert count == 1
    assert status == ConnectionStatus.DISCONNECTED


def test_peripheral_close_schedules_exactly_one_reconnect_after_five_seconds() -> None:
    async def _run() -> dict:
        first, second = FakeSocket(), FakeSocket()
        connector = FakeConnector([first, second])
        sleep = GatedSleep()
        channel = PeripheralChannel("ws://localhost:8001/robot", connector=connector, sleep=sleep)

        await channel.open()
        await _settle()
        result = {"get_info": json.loads(first.sent[0]), "connected_first": channel.is_connected}

        first.hang_up()
        first.hang_up()
        await _settle()
        result["pending"] = channel.reconnect_pending
        result["delays_after_close"] = list(sleep.delays)
        result["calls_before_release"] = connector.calls

        sleep.release()
        await _settle()
        result["calls_after_release"] = connector.calls
        result["connected_second"] = channel.is_connected
        result["delays_final"] = list(sleep.delays)

        await channel.close()
        return result

    result = asyncio.run(_run())
    assert result["get_info"] == {"type": "get_info"}
    assert result["connected_first"] is True
    assert result["pending"] is True
    assert result["delays_after_close"] == [5.0]
    assert result["calls_before_release"] == 1
    assert result["calls_after_release"] == 2
    assert result["connected_second"] is True
    assert result["delays_final"] == [5.0]


def test_peripheral_failures_are_swallowed_and_retried_until_closed() -> None:
    async def _run() -> tuple[int, ConnectionStatus, bool, int, ConnectionStatus]:
        connector = FakeConnector([])
        sleep = GatedSleep()
        channel = PeripheralChannel("ws://localhost:8001/robot", connector=connector, sleep=sleep)

        await channel.open()
        await _settle()
        sleep.release()
        await _settle()
        calls = connector.calls
        status = channel.state.status

        await channel.close()
        sleep.release()
        await _settle()
        return calls, status, channel.reconnect_pending, connector.calls, channel.state.status

    calls, status, pending, calls_after_close, final_status = asyncio.run(_run())
    assert calls == 2
    assert status == ConnectionStatus.ERROR
    assert pending is False
    assert calls_after_close == 2
    assert final_status == ConnectionStatus.DISCONNECTED


def test_peripheral_tracks_robot_messages_and_plays_expressions() -> None:
    async def _run() -> tuple:
        socket = FakeSocket(
            (
                '{"type": "info", "info": {"name": "reachy", "version": "1.0", "mode": "real"}}',
                '{"type": "state", "antennas": {"left": 0.1, "right": -0.1}}',
                '{"type": "error", "message": "motor hot"}',
            )
        )
        channel = PeripheralChannel("ws://localhost:8001/robot", connector=FakeConnector([socket]), sleep=GatedSleep())
        await channel.open()
        await _settle()
        played = await channel.play_expression(Expression.HAPPY)
        await channel.close()
        dropped = await channel.play_expression(Expression.SAD)
        return channel.info.name, channel.robot_state, channel.last_error, played, dropped, socket.sent

    name, state, last_error, played, dropped, sent = asyncio.run(_run())
    assert name == "reachy"
    assert state == {"antennas": {"left": 0.1, "right": -0.1}}
    assert last_error == "motor hot"
    assert played is True
    assert dropped is False
    assert json.loads(sent[-1]) == {"type": "play_expression", "expression": "happy"}


def test_failing_event_handler_does_not_stop_the_read_loop() -> None:
    async def _run() -> tuple[list[str], bool, bool]:
        socket = FakeSocket(('{"type": "thinking"}', '{"type": "response_start"}'))
        channel = BackendChannel("ws://backend/ws", reconnect_delay_seconds=None, connector=FakeConnector([socket]))
        seen: list[str] = []

        async def _handler(event) -> None:
            if event.type == "thinking":
                raise RuntimeError("output device failed")
            seen.append(event.type)

        channel.set_event_handler(_handler)
        await channel.open()
        await _settle()
        result = seen, channel.is_running, channel.is_connected
        await channel.close()
        return result

    seen, running, connected = asyncio.run(_run())
    assert seen == ["response_start"]
    assert running is True
    assert connected is True


def test_failing_disconnect_handler_keeps_reconnecting() -> None:
    async def _run() -> tuple[list[float], bool]:
        socket = FakeSocket()
        sleep = GatedSleep()
        channel = BackendChannel("ws://backend/ws", connector=FakeConnector([socket]), sleep=sleep)

        async def _on_disconnect() -> None:
            raise RuntimeError("output device failed")

        channel.set_disconnect_handler(_on_disconnect)
        await channel.open()
        await _settle()
        socket.hang_up()
        await _settle()
        result = list(sleep.delays), channel.reconnect_pending
        await channel.close()
        return result

    delays, pending = asyncio.run(_run())
    assert delays == [2.0]
    assert pending is True
