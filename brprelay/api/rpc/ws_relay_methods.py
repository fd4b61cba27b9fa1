"""Helpers for the duplex relay websocket endpoint."""

from __future__ import annotations

import uuid
from typing import Any, Callable

from brprelay.relay.broker import RelayBroker
from brprelay.relay.session import DuplexSession

CLOSE_POLICY_VIOLATION = 1008


async def bootstrap_relay_ws_connection(
    *,
    websocket: Any,
    broker: RelayBroker,
    logger_info: Callable[..., None],
) -> DuplexSession | None:
    """Accept the peer connection and install it as the broker's session.

    Returns None (after closing the socket) when the relay is disabled.
    """
    if not broker.enabled:
        await websocket.close(code=CLOSE_POLICY_VIOLATION, reason="relay disabled")
        logger_info("Rejected relay connection: relay disabled")
        return None
    await websocket.accept()
    connection_key = f"relay_{uuid.uuid4().hex[:12]}"
    client_host = getattr(websocket.client, "host", None) if websocket.client else None
    session = await broker.attach(websocket, conn_id=connection_key)
    logger_info("Relay websocket accepted conn={} client={}", connection_key, client_host)
    return session


async def run_relay_ws_loop(*, broker: RelayBroker, session: DuplexSession) -> None:
    """Run the inbound frame loop until the peer goes away."""
    await broker.run_session(session)


def cleanup_relay_ws_connection(
    *,
    broker: RelayBroker,
    session: DuplexSession,
    logger_error: Callable[..., None] | None = None,
    exc: Exception | None = None,
) -> None:
    """Cleanup relay websocket state on disconnect/error."""
    if exc is not None and logger_error is not None:
        logger_error("Relay WebSocket error: {}", exc)
    reason = f"session error: {exc}" if exc is not None else "session lost"
    broker.detach(session, reason)
