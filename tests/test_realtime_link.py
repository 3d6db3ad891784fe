from __future__ import annotations

import asyncio
import json

import pytest

from calls.errors import RealtimeLinkError
from conftest import FakeConnector, FakeRealtimeSocket
from realtime.link import RealtimeConfig, RealtimeLink, decode_event


def _link(connector: FakeConnector, *, attempts: int = 1) -> RealtimeLink:
    return RealtimeLink(
        "sk-test",
        RealtimeConfig(voice="verse", instructions="Be brief."),
        url="wss://realtime.example/v1",
        connect_attempts=attempts,
        backoff_seconds=0.0,
        connect=connector,
        label="test",
    )


async def _until(predicate, timeout: float = 1.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(_poll(), timeout)


def test_open_sends_single_session_update_with_mulaw_formats():
    async def _run():
        socket = FakeRealtimeSocket()
        connector = FakeConnector(socket)
        link = _link(connector)
        await link.open()
        await link.close()
        return socket, connector

    socket, connector = asyncio.run(_run())

    assert connector.calls[0]["url"] == "wss://realtime.example/v1"
    headers = connector.calls[0]["additional_headers"]
    assert headers["Authorization"] == "Bearer sk-test"
    assert headers["OpenAI-Beta"] == "realtime=v1"

    assert len(socket.sent) == 1
    update = json.loads(socket.sent[0])
    assert update["type"] == "session.update"
    session = update["session"]
    assert session["input_audio_format"] == "g711_ulaw"
    assert session["output_audio_format"] == "g711_ulaw"
    assert session["turn_detection"] == {"type": "server_vad"}
    assert session["voice"] == "verse"
    assert session["instructions"] == "Be brief."
    assert session["modalities"] == ["text", "audio"]
    assert socket.closed


def test_send_audio_and_commit_messages():
    async def _run():
        socket = FakeRealtimeSocket()
        link = _link(FakeConnector(socket))
        await link.open()
        assert await link.send_audio("AAAA")
        assert await link.commit()
        await link.close()
        return socket

    socket = asyncio.run(_run())
    sent = [json.loads(m) for m in socket.sent[1:]]
    assert sent == [
        {"type": "input_audio_buffer.append", "audio": "AAAA"},
        {"type": "input_audio_buffer.commit"},
    ]


def test_sends_are_noops_when_not_connected():
    async def _run():
        link = _link(FakeConnector())
        assert link.is_open is False
        assert await link.send_audio("AAAA") is False
        assert await link.commit() is False

    asyncio.run(_run())


def test_malformed_messages_are_dropped_and_valid_ones_delivered():
    async def _run():
        socket = FakeRealtimeSocket()
        link = _link(FakeConnector(socket))
        received: list[dict] = []

        async def handler(event):
            received.append(event)

        link.on_event(handler)
        await link.open()
        socket.push("{not json")
        socket.push("[1, 2]")
        socket.push(json.dumps({"type": "response.audio.delta", "delta": "AAAA"}))
        await _until(lambda: received)
        assert link.is_open
        await link.close()
        return received

    received = asyncio.run(_run())
    assert received == [{"type": "response.audio.delta", "delta": "AAAA"}]


def test_handler_errors_do_not_stop_the_link():
    async def _run():
        socket = FakeRealtimeSocket()
        link = _link(FakeConnector(socket))
        seen: list[str] = []

        async def handler(event):
            seen.append(event["type"])
            if event["type"] == "boom":
                raise RuntimeError("handler bug")

        link.on_event(handler)
        await link.open()
        socket.push(json.dumps({"type": "boom"}))
        socket.push(json.dumps({"type": "after"}))
        await _until(lambda: "after" in seen)
        await link.close()
        return seen

    assert asyncio.run(_run()) == ["boom", "after"]


def test_open_retries_then_raises():
    async def _run():
        connector = FakeConnector(ConnectionRefusedError("down"), OSError("down"), TimeoutError())
        link = _link(connector, attempts=3)
        with pytest.raises(RealtimeLinkError):
            await link.open()
        return connector

    connector = asyncio.run(_run())
    assert len(connector.calls) == 3


def test_open_succeeds_after_transient_failure():
    async def _run():
        socket = FakeRealtimeSocket()
        connector = FakeConnector(ConnectionRefusedError("down"), socket)
        link = _link(connector, attempts=2)
        await link.open()
        assert link.is_open
        await link.close()
        return connector

    assert len(asyncio.run(_run()).calls) == 2


def test_reconnects_and_reinitializes_after_drop():
    async def _run():
        first, second = FakeRealtimeSocket(), FakeRealtimeSocket()
        connector = FakeConnector(first, second)
        link = _link(connector, attempts=2)
        await link.open()

        first.hang_up()
        await _until(lambda: second.sent)
        assert link.is_open
        assert await link.send_audio("BBBB")
        await link.close()
        return second

    second = asyncio.run(_run())
    assert json.loads(second.sent[0])["type"] == "session.update"
    assert json.loads(second.sent[1]) == {"type": "input_audio_buffer.append", "audio": "BBBB"}


def test_link_stays_down_when_reconnect_fails():
    async def _run():
        socket = FakeRealtimeSocket()
        connector = FakeConnector(socket, ConnectionRefusedError("down"))
        link = _link(connector, attempts=1)
        await link.open()
        socket.hang_up()
        await _until(lambda: len(connector.calls) == 2)
        await _until(lambda: not link.is_open)
        assert await link.send_audio("AAAA") is False
        await link.close()

    asyncio.run(_run())


def test_close_is_idempotent_and_blocks_reopen():
    async def _run():
        socket = FakeRealtimeSocket()
        link = _link(FakeConnector(socket))
        await link.open()
        await link.close()
        await link.close()
        assert not link.is_open
        with pytest.raises(RealtimeLinkError):
            await link.open()

    asyncio.run(_run())


def test_decode_event():
    assert decode_event('{"type": "x"}') == {"type": "x"}
    assert decode_event("nope") is None
    assert decode_event("42") is None


def test_socket_is_closed_when_session_update_fails():
    async def _run():
        broken = FakeRealtimeSocket(send_error=OSError("reset by peer"))
        healthy = FakeRealtimeSocket()
        link = _link(FakeConnector(broken, healthy), attempts=2)
        await link.open()
        assert link.is_open
        await link.close()
        return broken, healthy

    broken, healthy = asyncio.run(_run())
    assert broken.closed
    assert json.loads(healthy.sent[0])["type"] == "session.update"


def test_socket_is_closed_when_open_is_cancelled_mid_handshake():
    async def _run():
        socket = FakeRealtimeSocket(send_blocks=True)
        connector = FakeConnector(socket)
        link = _link(connector)
        task = asyncio.create_task(link.open())
        await _until(lambda: connector.calls)
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert not link.is_open
        return socket

    assert asyncio.run(_run()).closed
