"""Relay broker: one duplex peer, many concurrent HTTP callers."""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any

from loguru import logger

from brprelay.relay.correlation import CorrelationTable, PendingCall, ReplySink, SinkKind
from brprelay.relay.frames import (
    has_reply_payload,
    is_end_marker,
    is_request_frame,
    is_terminal_reply,
    reply_id,
)
from brprelay.relay.session import CLOSE_NORMAL, CLOSE_SUPERSEDED, DuplexSession
from brprelay.utils.exceptions import (
    MalformedFrameError,
    NoSessionError,
    RelayDisabledError,
    SessionClosedError,
    UnknownIdError,
)


class BrokerState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


class RelayBroker:
    """Tracks the active duplex session and routes replies to pending calls.

    State machine: ``DISCONNECTED -> CONNECTED -> DISCONNECTED -> ...``.
    Attaching a new connection while one is active replaces it; the old
    session is closed and its pending calls fail with a session-lost error.
    """

    def __init__(
        self,
        *,
        table: CorrelationTable | None = None,
        send_timeout: float | None = 5.0,
        max_frame_bytes: int | None = None,
        enabled: bool = True,
    ):
        self._table = table or CorrelationTable()
        self._send_timeout = send_timeout
        self._max_frame_bytes = max_frame_bytes
        self._enabled = enabled
        self._session: DuplexSession | None = None
        self._generation = 0
        self._attach_lock = asyncio.Lock()
        self.replies_routed = 0
        self.replies_dropped = 0

    @classmethod
    def from_config(cls, relay_config: Any) -> "RelayBroker":
        return cls(
            send_timeout=relay_config.send_timeout_seconds,
            max_frame_bytes=relay_config.max_frame_bytes,
            enabled=relay_config.enabled,
        )

    @property
    def table(self) -> CorrelationTable:
        return self._table

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def session(self) -> DuplexSession | None:
        return self._session

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def state(self) -> BrokerState:
        if self._session is not None and self._session.alive:
            return BrokerState.CONNECTED
        return BrokerState.DISCONNECTED

    @property
    def connected(self) -> bool:
        return self.state is BrokerState.CONNECTED

    # ---------- session lifecycle ----------

    async def attach(self, websocket: Any, *, conn_id: str | None = None) -> DuplexSession:
        """Install a new session for an accepted websocket, replacing any active one."""
        async with self._attach_lock:
            previous = self._session
            self._generation += 1
            session = DuplexSession(
                websocket,
                generation=self._generation,
                send_timeout=self._send_timeout,
                max_frame_bytes=self._max_frame_bytes,
                conn_id=conn_id,
            )
            self._session = session
        logger.info("Relay peer connected: conn={} generation={}", session.conn_id, session.generation)
        if previous is not None:
            logger.info(
                "Relay session generation={} superseded by generation={}",
                previous.generation,
                session.generation,
            )
            self._end_session(previous, "session replaced")
            await previous.close(CLOSE_SUPERSEDED, "superseded by a new relay connection")
        return session

    async def run_session(self, session: DuplexSession) -> None:
        """Consume the session's inbound frames until it ends, then drain it."""
        try:
            async for frame in session.frames():
                self.route_frame(session, frame)
        finally:
            self._end_session(session, session.close_reason or "session lost")

    async def serve(self, websocket: Any, *, conn_id: str | None = None) -> None:
        session = await self.attach(websocket, conn_id=conn_id)
        await self.run_session(session)

    def detach(self, session: DuplexSession, reason: str = "session lost") -> None:
        """Mark a session ended (idempotent) and fail its pending calls."""
        self._end_session(session, reason)

    def _end_session(self, session: DuplexSession, reason: str) -> None:
        if self._session is session:
            self._session = None
            logger.warning(
                "Relay peer disconnected: conn={} generation={} reason={}",
                session.conn_id,
                session.generation,
                reason,
            )
        session.close_reason = session.close_reason or reason
        self._table.drain_all(reason, generation=session.generation)

    async def shutdown(self) -> None:
        session = self._session
        if session is not None:
            self._end_session(session, "relay shutting down")
            await session.close(CLOSE_NORMAL, "relay shutting down")
        self._table.drain_all("relay shutting down")

    # ---------- inbound (peer -> callers) ----------

    def route_frame(self, session: DuplexSession, frame: dict[str, Any]) -> bool:
        """Deliver one inbound frame. Returns True when it reached a caller."""
        if session is not self._session:
            self.replies_dropped += 1
            logger.debug("Dropped frame from superseded relay session generation={}", session.generation)
            return False
        if is_request_frame(frame):
            self.replies_dropped += 1
            logger.warning("Dropped peer-initiated request method={} (not supported)", frame.get("method"))
            return False
        try:
            call_id = reply_id(frame)
        except MalformedFrameError as e:
            self.replies_dropped += 1
            logger.warning("Dropped relay reply: {}", e.message)
            return False
        if not has_reply_payload(frame) and not is_end_marker(frame):
            self.replies_dropped += 1
            logger.warning("Dropped relay frame id={!r} with no result, error or end marker", call_id)
            return False

        pending = self._table.get(call_id)
        streaming = pending is not None and pending.kind is SinkKind.STREAMING
        terminal = is_terminal_reply(frame, streaming=streaming)
        payload: dict[str, Any] | None = frame
        if streaming and is_end_marker(frame) and not has_reply_payload(frame):
            payload = None
        try:
            self._table.deliver(call_id, payload, terminal=terminal, generation=session.generation)
        except UnknownIdError:
            self.replies_dropped += 1
            logger.warning("Dropped relay reply for unknown id={!r} (late or duplicate)", call_id)
            return False
        self.replies_routed += 1
        return True

    # ---------- outbound (callers -> peer) ----------

    def register(self, call_id: Any, sink: ReplySink) -> PendingCall:
        """Register a call against the current session generation."""
        if not self._enabled:
            raise RelayDisabledError()
        session = self._session
        if session is None or not session.alive:
            raise NoSessionError()
        return self._table.register(call_id, sink, generation=session.generation)

    async def send(self, pending: PendingCall, frame: dict[str, Any]) -> None:
        """Write a registered call's request frame onto its session."""
        session = self._session
        if session is None or not session.alive or session.generation != pending.generation:
            raise NoSessionError("relay peer disconnected")
        try:
            await session.send(frame)
        except SessionClosedError as e:
            if not session.alive:
                # The reader may still be parked in receive(); fail this generation now.
                self._table.discard(pending.call_id, pending)
                self._end_session(session, session.close_reason or "send failed")
            raise NoSessionError("relay peer disconnected") from e

    def cancel(self, pending: PendingCall, reason: str = "cancelled") -> bool:
        """Cancel a registration if it is still the live entry for its id."""
        if self._table.get(pending.call_id) is not pending:
            return False
        self._table.cancel(pending.call_id, reason)
        return True

    def status(self) -> dict[str, Any]:
        session = self._session
        return {
            "enabled": self._enabled,
            "state": self.state.value,
            "connected": self.connected,
            "generation": self._generation,
            "pending": len(self._table),
            "calls": self._table.snapshot(),
            "repliesRouted": self.replies_routed,
            "repliesDropped": self.replies_dropped,
            "session": session.info() if session is not None else None,
        }
