"""HTTP JSON-RPC endpoint against an in-process app and a fake peer."""

from __future__ import annotations

import asyncio
import json

import pytest
from httpx import ASGITransport, AsyncClient

import brprelay.api.server as server
from brprelay.config.schema import Config
from brprelay.relay.broker import RelayBroker
from conftest import FakeRelaySocket, pong_responder


@pytest.fixture
def restore_app_state():
    saved = dict(server.app_state)
    yield
    server.app_state.clear()
    server.app_state.update(saved)


@pytest.fixture
async def client(restore_app_state):
    config = Config()
    config.relay.call_timeout_seconds = 0.2
    broker, _ = server.install_relay(config, broker=RelayBroker())
    async with AsyncClient(transport=ASGITransport(app=server.app), base_url="http://test") as c:
        yield c, broker
    await broker.shutdown()


@pytest.fixture
async def connected(client):
    c, broker = client
    ws = FakeRelaySocket(responder=pong_responder)
    session = await broker.attach(ws)
    reader = asyncio.create_task(broker.run_session(session))
    yield c, broker, ws
    ws.disconnect()
    await asyncio.wait_for(reader, timeout=1)


def _sse_frames(text: str) -> list[dict]:
    return [json.loads(line[len("data: "):]) for line in text.splitlines() if line.startswith("data: ")]


@pytest.mark.asyncio
async def test_call_is_relayed_to_peer(connected):
    c, _, ws = connected
    r = await c.post("/", json={"jsonrpc": "2.0", "id": 1, "method": "rpc.ping"})
    assert r.status_code == 200
    assert r.json() == {"jsonrpc": "2.0", "id": 1, "result": {"pong": True}}
    assert ws.sent[0] == {"jsonrpc": "2.0", "id": 1, "method": "rpc.ping"}


@pytest.mark.asyncio
async def test_jsonrpc_alias_path(connected):
    c, _, _ = connected
    r = await c.post("/jsonrpc", json={"jsonrpc": "2.0", "id": "s", "method": "rpc.ping"})
    assert r.json()["id"] == "s"


@pytest.mark.asyncio
async def test_call_without_peer_returns_no_session_error(client):
    c, _ = client
    r = await c.post("/", json={"jsonrpc": "2.0", "id": 1, "method": "rpc.ping"})
    assert r.status_code == 200
    body = r.json()
    assert body["id"] == 1
    assert body["error"]["code"] == -32001
    assert body["error"]["data"]["error_code"] == "NO_SESSION"


@pytest.mark.asyncio
async def test_call_timeout_maps_to_timeout_error(connected):
    c, _, _ = connected
    r = await c.post("/", json={"jsonrpc": "2.0", "id": 2, "method": "never.answers"})
    assert r.json()["error"]["code"] == -32002


@pytest.mark.asyncio
async def test_parse_error_and_batch_rejected(client):
    c, _ = client
    r = await c.post("/", content=b"{not json", headers={"content-type": "application/json"})
    assert r.json()["error"]["code"] == -32700
    assert r.json()["id"] is None

    r = await c.post("/", json=[{"jsonrpc": "2.0", "id": 1, "method": "rpc.ping"}])
    assert r.json()["error"]["code"] == -32600


@pytest.mark.asyncio
async def test_invalid_id_returns_invalid_request(connected):
    c, _, ws = connected
    r = await c.post("/", json={"jsonrpc": "2.0", "id": None, "method": "rpc.ping"})
    assert r.json()["error"]["code"] == -32600
    assert ws.sent == []


@pytest.mark.asyncio
async def test_watch_streams_server_sent_events(connected):
    c, broker, _ = connected
    r = await c.post("/", json={"jsonrpc": "2.0", "id": "w", "method": "bevy/get+watch"})
    assert r.headers["content-type"].startswith("text/event-stream")
    frames = _sse_frames(r.text)
    assert [f["result"]["tick"] for f in frames] == [0, 1]
    assert len(broker.table) == 0


@pytest.mark.asyncio
async def test_watch_without_peer_returns_plain_error(client):
    c, _ = client
    r = await c.post("/", json={"jsonrpc": "2.0", "id": "w", "method": "x+watch"})
    assert r.headers["content-type"].startswith("application/json")
    assert r.json()["error"]["code"] == -32001


@pytest.mark.asyncio
async def test_health_and_status(connected):
    c, _, _ = connected
    health = (await c.get("/health")).json()
    assert health == {"ok": True, "service": "brprelay", "connected": True}
    status = (await c.get("/status")).json()
    assert status["path"] == "/brp-relay"
    assert status["generation"] == 1
    assert status["pending"] == 0
