"""Inbound call gateway: synchronous calls in, correlated replies out."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

from loguru import logger

from brprelay.relay.broker import RelayBroker
from brprelay.relay.correlation import PendingCall, SingleShotSink, StreamingSink
from brprelay.relay.frames import is_watch_method, parse_request
from brprelay.utils.exceptions import CallCancelledError, CallTimeoutError


class WatchStream:
    """Handle for an open watch call; iterate it for replies in arrival order."""

    def __init__(self, broker: RelayBroker, pending: PendingCall, sink: StreamingSink, method: str):
        self._broker = broker
        self._pending = pending
        self._sink = sink
        self.method = method

    @property
    def call_id(self) -> Any:
        return self._pending.call_id

    @property
    def closed(self) -> bool:
        return self._pending.completed

    def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[dict[str, Any]]:
        try:
            async for item in self._sink.items():
                yield item
        except CallCancelledError:
            return
        finally:
            self.cancel("watch closed by caller")

    def cancel(self, reason: str = "cancelled") -> None:
        """Stop the watch. A late reply from the peer is dropped as unknown."""
        if self._broker.cancel(self._pending, reason):
            logger.debug("Watch id={!r} cancelled: {}", self.call_id, reason)

    async def __aenter__(self) -> "WatchStream":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.cancel("watch closed by caller")


class CallGateway:
    """Entry point for inbound JSON-RPC calls bound for the duplex peer."""

    def __init__(self, broker: RelayBroker, *, call_timeout: float = 30.0, watch_buffer_size: int = 8):
        self._broker = broker
        self._call_timeout = call_timeout
        self._watch_buffer_size = watch_buffer_size

    @classmethod
    def from_config(cls, broker: RelayBroker, relay_config: Any) -> "CallGateway":
        return cls(
            broker,
            call_timeout=relay_config.call_timeout_seconds,
            watch_buffer_size=relay_config.watch_buffer_size,
        )

    @property
    def broker(self) -> RelayBroker:
        return self._broker

    @staticmethod
    def is_watch(payload: Any) -> bool:
        method = payload.get("method") if isinstance(payload, dict) else None
        return isinstance(method, str) and is_watch_method(method)

    async def call(self, payload: Any, *, timeout: float | None = None) -> dict[str, Any]:
        """Forward a one-shot call and wait for its reply frame.

        Raises NoSessionError, DuplicateIdError, InvalidRequestError,
        CallTimeoutError or SessionLostError.
        """
        call_id, method, frame = parse_request(payload)
        timeout = self._call_timeout if timeout is None else timeout
        sink = SingleShotSink()
        pending = self._broker.register(call_id, sink)
        try:
            await self._broker.send(pending, frame)
            return await asyncio.wait_for(sink.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            self._broker.cancel(pending, "timed out")
            logger.warning("Relay call id={!r} method={} timed out after {}s", call_id, method, timeout)
            raise CallTimeoutError(f"call {method}", timeout) from None
        except asyncio.CancelledError:
            self._broker.cancel(pending, "caller went away")
            raise
        finally:
            self._broker.table.discard(call_id, pending)

    async def watch(self, payload: Any) -> WatchStream:
        """Open a streaming call. Registration and the send happen before this returns."""
        call_id, method, frame = parse_request(payload)
        sink = StreamingSink(call_id, capacity=self._watch_buffer_size)
        pending = self._broker.register(call_id, sink)
        try:
            await self._broker.send(pending, frame)
        except BaseException:
            self._broker.table.discard(call_id, pending)
            raise
        return WatchStream(self._broker, pending, sink, method)
