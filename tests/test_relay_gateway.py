"""End-to-end behaviour of calls through the gateway, broker and a fake peer."""

import asyncio

import pytest

from brprelay.relay.broker import BrokerState, RelayBroker
from brprelay.relay.gateway import CallGateway
from brprelay.utils.exceptions import (
    CallTimeoutError,
    DuplicateIdError,
    InvalidRequestError,
    NoSessionError,
    SessionLostError,
    WatchOverflowError,
)
from conftest import FakeRelaySocket, pong_responder, settle


@pytest.fixture
async def relay():
    """Broker with a connected fake peer and a running reader task."""
    broker = RelayBroker()
    ws = FakeRelaySocket(responder=pong_responder)
    session = await broker.attach(ws)
    reader = asyncio.create_task(broker.run_session(session))
    gateway = CallGateway(broker, call_timeout=2.0, watch_buffer_size=8)
    yield gateway, broker, ws
    ws.disconnect()
    await asyncio.wait_for(reader, timeout=1)


@pytest.mark.asyncio
async def test_call_returns_peer_reply(relay):
    gateway, broker, ws = relay
    reply = await gateway.call({"jsonrpc": "2.0", "id": 1, "method": "rpc.ping"})
    assert reply == {"jsonrpc": "2.0", "id": 1, "result": {"pong": True}}
    assert ws.sent[0]["method"] == "rpc.ping"
    assert len(broker.table) == 0


@pytest.mark.asyncio
async def test_call_forwards_peer_error_reply_unchanged(relay):
    gateway, _, ws = relay
    ws.responder = lambda frame: [
        {"jsonrpc": "2.0", "id": frame["id"], "error": {"code": -32601, "message": "Method not found"}}
    ]
    reply = await gateway.call({"id": "e", "method": "missing"})
    assert reply["error"]["code"] == -32601


@pytest.mark.asyncio
async def test_call_timeout_then_late_reply_is_dropped(relay):
    gateway, broker, ws = relay
    ws.responder = None
    with pytest.raises(CallTimeoutError):
        await gateway.call({"id": 9, "method": "slow"}, timeout=0.05)
    assert 9 not in broker.table

    ws.feed({"jsonrpc": "2.0", "id": 9, "result": "late"})
    await settle()
    assert broker.replies_dropped == 1
    assert broker.replies_routed == 0


@pytest.mark.asyncio
async def test_duplicate_in_flight_id_is_rejected(relay):
    gateway, broker, ws = relay
    ws.responder = None
    first = asyncio.create_task(gateway.call({"id": 7, "method": "slow"}))
    await settle()

    with pytest.raises(DuplicateIdError):
        await gateway.call({"id": 7, "method": "slow"})
    assert len(ws.sent) == 1

    ws.feed({"jsonrpc": "2.0", "id": 7, "result": "first"})
    assert (await asyncio.wait_for(first, timeout=1))["result"] == "first"


@pytest.mark.asyncio
async def test_concurrent_calls_are_correlated_out_of_order(relay):
    gateway, broker, ws = relay
    ws.responder = None
    calls = [asyncio.create_task(gateway.call({"id": n, "method": "echo"})) for n in (1, 2, 3)]
    await settle()
    assert len(broker.table) == 3

    for n in (3, 1, 2):
        ws.feed({"jsonrpc": "2.0", "id": n, "result": n * 10})
    replies = await asyncio.wait_for(asyncio.gather(*calls), timeout=1)

    assert [r["result"] for r in replies] == [10, 20, 30]


@pytest.mark.asyncio
async def test_call_without_peer_raises_no_session():
    gateway = CallGateway(RelayBroker())
    with pytest.raises(NoSessionError):
        await gateway.call({"id": 1, "method": "rpc.ping"})


@pytest.mark.asyncio
async def test_invalid_id_is_rejected_before_registration(relay):
    gateway, broker, ws = relay
    with pytest.raises(InvalidRequestError):
        await gateway.call({"id": True, "method": "rpc.ping"})
    with pytest.raises(InvalidRequestError):
        await gateway.call({"id": 1.5, "method": "rpc.ping"})
    assert ws.sent == []


@pytest.mark.asyncio
async def test_pending_call_fails_when_peer_disconnects(relay):
    gateway, broker, ws = relay
    ws.responder = None
    call = asyncio.create_task(gateway.call({"id": 1, "method": "slow"}))
    await settle()
    ws.disconnect()
    with pytest.raises(SessionLostError):
        await asyncio.wait_for(call, timeout=1)
    assert not broker.connected


@pytest.mark.asyncio
async def test_caller_cancellation_releases_the_id(relay):
    gateway, broker, ws = relay
    ws.responder = None
    call = asyncio.create_task(gateway.call({"id": 4, "method": "slow"}))
    await settle()
    call.cancel()
    with pytest.raises(asyncio.CancelledError):
        await call
    assert 4 not in broker.table


@pytest.mark.asyncio
async def test_watch_streams_replies_until_end(relay):
    gateway, broker, _ = relay
    stream = await gateway.watch({"id": "w", "method": "bevy/get+watch"})
    replies = [reply async for reply in stream]
    assert [r["result"]["tick"] for r in replies] == [0, 1]
    assert stream.closed
    assert len(broker.table) == 0


@pytest.mark.asyncio
async def test_two_watches_are_independent(relay):
    gateway, broker, ws = relay
    ws.responder = None
    a = await gateway.watch({"id": "a", "method": "x+watch"})
    b = await gateway.watch({"id": "b", "method": "x+watch"})
    ws.feed({"id": "a", "result": "a0"})
    ws.feed({"id": "b", "result": "b0"})
    ws.feed({"id": "a", "result": "a1"})
    ws.feed({"id": "b", "end": True})
    ws.feed({"id": "a", "end": True})

    got_a = [r["result"] async for r in a]
    got_b = [r["result"] async for r in b]
    assert got_a == ["a0", "a1"]
    assert got_b == ["b0"]


@pytest.mark.asyncio
async def test_watch_cancel_drops_later_replies(relay):
    gateway, broker, ws = relay
    ws.responder = None
    async with await gateway.watch({"id": "w", "method": "x+watch"}) as stream:
        assert "w" in broker.table
    assert "w" not in broker.table
    assert stream.closed

    ws.feed({"id": "w", "result": "late"})
    await settle()
    assert broker.replies_dropped == 1


@pytest.mark.asyncio
async def test_watch_overflow_surfaces_to_consumer(relay):
    gateway, broker, ws = relay
    ws.responder = None
    gateway = CallGateway(broker, watch_buffer_size=2)
    stream = await gateway.watch({"id": "w", "method": "x+watch"})
    for n in range(3):
        ws.feed({"id": "w", "result": n})
    await settle()

    received = []
    with pytest.raises(WatchOverflowError):
        async for reply in stream:
            received.append(reply["result"])
    assert received == [0, 1]
    assert "w" not in broker.table


@pytest.mark.asyncio
async def test_watch_without_peer_leaves_no_entry():
    broker = RelayBroker()
    with pytest.raises(NoSessionError):
        await CallGateway(broker).watch({"id": "w", "method": "x+watch"})
    assert len(broker.table) == 0


class _FlakyWs(FakeRelaySocket):
    def __init__(self):
        super().__init__()
        self.broken = False

    async def send_text(self, text: str):
        if self.broken:
            raise RuntimeError("Unexpected ASGI message 'websocket.send'")
        await super().send_text(text)


async def _collect(stream) -> list:
    return [reply async for reply in stream]


@pytest.mark.asyncio
async def test_send_failure_drains_pending_calls_and_watches():
    broker = RelayBroker()
    ws = _FlakyWs()
    session = await broker.attach(ws)
    reader = asyncio.create_task(broker.run_session(session))
    gateway = CallGateway(broker, call_timeout=5.0)
    first = asyncio.create_task(gateway.call({"id": 1, "method": "slow"}))
    watch = await gateway.watch({"id": "w", "method": "x+watch"})
    await settle()
    ws.broken = True

    with pytest.raises(NoSessionError):
        await gateway.call({"id": 2, "method": "slow"})

    assert broker.state is BrokerState.DISCONNECTED
    with pytest.raises(SessionLostError):
        await asyncio.wait_for(first, timeout=1)
    with pytest.raises(SessionLostError):
        await asyncio.wait_for(_collect(watch), timeout=1)
    assert len(broker.table) == 0

    ws.disconnect()
    await asyncio.wait_for(reader, timeout=1)


@pytest.mark.asyncio
async def test_finished_watch_can_be_iterated_again(relay):
    gateway, _, _ = relay
    stream = await gateway.watch({"id": "w", "method": "bevy/get+watch"})
    assert len(await _collect(stream)) == 2
    assert await asyncio.wait_for(_collect(stream), timeout=1) == []
