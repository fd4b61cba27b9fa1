import asyncio

import pytest

from brprelay.relay.session import CLOSE_SUPERSEDED, DuplexSession
from brprelay.utils.exceptions import CallTimeoutError, SessionClosedError
from conftest import FakeRelaySocket


class _SlowWs(FakeRelaySocket):
    async def send_text(self, text: str):
        await asyncio.sleep(1)


class _BrokenWs(FakeRelaySocket):
    async def send_text(self, text: str):
        raise RuntimeError("Cannot call send once a close message has been sent")


async def _drain(session: DuplexSession) -> list:
    return [frame async for frame in session.frames()]


@pytest.mark.asyncio
async def test_send_writes_one_frame_and_counts():
    ws = FakeRelaySocket()
    session = DuplexSession(ws, generation=1)
    await session.send({"jsonrpc": "2.0", "id": 1, "method": "rpc.ping"})
    assert ws.sent == [{"jsonrpc": "2.0", "id": 1, "method": "rpc.ping"}]
    assert session.frames_out == 1


@pytest.mark.asyncio
async def test_send_timeout_keeps_session_alive():
    session = DuplexSession(_SlowWs(), generation=1, send_timeout=0.05)
    with pytest.raises(CallTimeoutError):
        await session.send({"id": 1, "method": "x"})
    assert session.alive is True


@pytest.mark.asyncio
async def test_send_failure_marks_session_dead():
    session = DuplexSession(_BrokenWs(), generation=2)
    with pytest.raises(SessionClosedError):
        await session.send({"id": 1, "method": "x"})
    assert session.alive is False
    assert "send failed" in session.close_reason
    with pytest.raises(SessionClosedError):
        await session.send({"id": 2, "method": "x"})


@pytest.mark.asyncio
async def test_frames_skip_malformed_and_end_on_disconnect():
    ws = FakeRelaySocket()
    session = DuplexSession(ws, generation=1)
    ws.feed({"jsonrpc": "2.0", "id": 1, "result": 1})
    ws.feed("{broken")
    ws.feed("[1, 2, 3]")
    ws.feed_bytes(b"\xff\xfe")
    ws.feed_bytes(b'{"jsonrpc": "2.0", "id": 2, "result": 2}')
    ws.disconnect(1001)

    frames = await asyncio.wait_for(_drain(session), timeout=1)

    assert [f["id"] for f in frames] == [1, 2]
    assert session.frames_in == 2
    assert session.frames_dropped == 3
    assert session.alive is False
    assert "1001" in session.close_reason


@pytest.mark.asyncio
async def test_frames_drop_oversized_frames():
    ws = FakeRelaySocket()
    session = DuplexSession(ws, generation=1, max_frame_bytes=40)
    ws.feed({"id": 1, "result": "x" * 100})
    ws.feed({"id": 2, "result": 0})
    ws.disconnect()
    frames = await asyncio.wait_for(_drain(session), timeout=1)
    assert [f["id"] for f in frames] == [2]
    assert session.frames_dropped == 1


@pytest.mark.asyncio
async def test_close_records_reason_and_stops_reader():
    ws = FakeRelaySocket()
    session = DuplexSession(ws, generation=7, conn_id="relay_test")
    reader = asyncio.create_task(_drain(session))
    await asyncio.sleep(0)

    await session.close(CLOSE_SUPERSEDED, "superseded")

    assert await asyncio.wait_for(reader, timeout=1) == []
    assert ws.closed == (CLOSE_SUPERSEDED, "superseded")
    info = session.info()
    assert info["connId"] == "relay_test"
    assert info["generation"] == 7
    assert info["alive"] is False
    assert info["closeReason"] == "superseded"
