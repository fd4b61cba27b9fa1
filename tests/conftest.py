"""Pytest hooks and fixtures."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable

import pytest


class FakeRelaySocket:
    """ASGI-style websocket standing in for the remote peer.

    ``responder`` sees every frame the relay sends and returns the reply
    frames the peer should answer with (fed back through ``receive``).
    """

    def __init__(self, responder: Callable[[dict[str, Any]], list[Any] | None] | None = None):
        self.client = type("Client", (), {"host": "127.0.0.1"})()
        self.responder = responder
        self.inbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self.sent: list[dict[str, Any]] = []
        self.accepted = False
        self.closed: tuple[int, str] | None = None

    async def accept(self):
        self.accepted = True

    async def receive(self) -> dict[str, Any]:
        return await self.inbox.get()

    async def send_text(self, text: str):
        if self.closed is not None:
            raise RuntimeError("websocket is closed")
        frame = json.loads(text)
        self.sent.append(frame)
        if self.responder is not None:
            for reply in self.responder(frame) or []:
                self.feed(reply)

    async def close(self, code: int = 1000, reason: str = ""):
        self.closed = (code, reason)
        self.disconnect(code)

    def feed(self, frame: Any):
        text = frame if isinstance(frame, str) else json.dumps(frame)
        self.inbox.put_nowait({"type": "websocket.receive", "text": text})

    def feed_bytes(self, raw: bytes):
        self.inbox.put_nowait({"type": "websocket.receive", "bytes": raw})

    def disconnect(self, code: int = 1000):
        self.inbox.put_nowait({"type": "websocket.disconnect", "code": code})


def pong_responder(frame: dict[str, Any]) -> list[dict[str, Any]]:
    """Answer rpc.ping, stream two ticks for ``+watch`` methods, ignore the rest."""
    method = frame.get("method", "")
    if method == "rpc.ping":
        return [{"jsonrpc": "2.0", "id": frame["id"], "result": {"pong": True}}]
    if "+watch" in method:
        return [
            {"jsonrpc": "2.0", "id": frame["id"], "result": {"tick": 0}},
            {"jsonrpc": "2.0", "id": frame["id"], "result": {"tick": 1}},
            {"jsonrpc": "2.0", "id": frame["id"], "end": True},
        ]
    return []


async def settle(delay: float = 0.02) -> None:
    """Give the session reader a chance to route queued frames."""
    await asyncio.sleep(delay)


@pytest.fixture
def fake_socket_factory():
    return FakeRelaySocket


@pytest.fixture
def pong_socket():
    return FakeRelaySocket(responder=pong_responder)


def pytest_configure(config):
    """Register custom markers (also in pyproject.toml)."""
    config.addinivalue_line(
        "markers",
        "integration: runs the ASGI app in-process with a live websocket peer",
    )
