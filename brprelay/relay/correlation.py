"""Correlation table: in-flight call id -> delivery sink.

Pure bookkeeping, no I/O. Every method is synchronous and never awaits,
so on the event loop each one runs to completion before any other
table operation starts.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from loguru import logger

from brprelay.utils.exceptions import (
    CallCancelledError,
    DuplicateIdError,
    RelayError,
    SessionLostError,
    UnknownIdError,
    WatchOverflowError,
)


class SinkKind(Enum):
    SINGLE_SHOT = "single_shot"
    STREAMING = "streaming"


class Delivered(Enum):
    """Outcome of a successful ``deliver``."""
    PENDING = "pending"  # entry stays registered (streaming)
    COMPLETED = "completed"  # entry removed


class SingleShotSink:
    """Future-backed sink for a call that expects exactly one reply."""

    kind = SinkKind.SINGLE_SHOT

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._future: asyncio.Future[Any] = (loop or asyncio.get_running_loop()).create_future()

    def push(self, payload: Any, *, terminal: bool = True) -> bool:
        if not self._future.done():
            self._future.set_result(payload)
        return True

    def fail(self, exc: RelayError) -> None:
        if not self._future.done():
            self._future.set_exception(exc)

    @property
    def done(self) -> bool:
        return self._future.done()

    async def wait(self) -> Any:
        return await self._future


class StreamingSink:
    """Bounded multi-item channel for a watch call."""

    kind = SinkKind.STREAMING
    _END = object()

    def __init__(self, call_id: Any, capacity: int = 8):
        self._call_id = call_id
        self._capacity = capacity
        # Capacity is enforced in push(); the queue itself stays unbounded so
        # the closing sentinel always fits.
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False
        self._error: RelayError | None = None

    def push(self, payload: Any, *, terminal: bool = False) -> bool:
        """Queue one item. Returns True once the stream is finished."""
        if self._closed:
            return True
        if payload is not None:
            if not terminal and self._queue.qsize() >= self._capacity:
                self.fail(WatchOverflowError(self._call_id, self._capacity))
                return True
            self._queue.put_nowait(payload)
        if terminal:
            self._close()
        return terminal

    def fail(self, exc: RelayError) -> None:
        if self._closed:
            return
        self._error = exc
        self._close()

    def _close(self) -> None:
        self._closed = True
        self._queue.put_nowait(self._END)

    @property
    def done(self) -> bool:
        return self._closed

    async def items(self) -> AsyncIterator[Any]:
        """Yield items in arrival order; raise the failure, if any, at the end."""
        while True:
            item = await self._queue.get()
            if item is self._END:
                # Leave the marker for any later reader.
                self._queue.put_nowait(self._END)
                break
            yield item
        if self._error is not None:
            raise self._error


ReplySink = SingleShotSink | StreamingSink


@dataclass
class PendingCall:
    call_id: Any
    sink: ReplySink
    generation: int = 0
    created_at: float = field(default_factory=time.monotonic)
    completed: bool = False

    @property
    def kind(self) -> SinkKind:
        return self.sink.kind

    @property
    def age_seconds(self) -> float:
        return time.monotonic() - self.created_at


class CorrelationTable:
    """Maps in-flight call ids to the sinks waiting for their replies."""

    def __init__(self):
        self._pending: dict[Any, PendingCall] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, call_id: Any) -> bool:
        return call_id in self._pending

    def get(self, call_id: Any) -> PendingCall | None:
        return self._pending.get(call_id)

    def register(self, call_id: Any, sink: ReplySink, *, generation: int = 0) -> PendingCall:
        if call_id in self._pending:
            raise DuplicateIdError(call_id)
        pending = PendingCall(call_id=call_id, sink=sink, generation=generation)
        self._pending[call_id] = pending
        return pending

    def deliver(
        self,
        call_id: Any,
        payload: Any,
        *,
        terminal: bool = True,
        generation: int | None = None,
    ) -> Delivered:
        """Route a reply to its sink.

        Single-shot entries are removed on first delivery. Streaming entries
        stay until ``terminal`` is set or the sink overflows. When
        ``generation`` is given, a pending call from another generation is
        treated as unknown.
        """
        pending = self._pending.get(call_id)
        if pending is None or (generation is not None and pending.generation != generation):
            raise UnknownIdError(call_id)
        finished = pending.sink.push(payload, terminal=terminal)
        if finished:
            pending.completed = True
            del self._pending[call_id]
            return Delivered.COMPLETED
        return Delivered.PENDING

    def cancel(self, call_id: Any, reason: str = "cancelled") -> None:
        pending = self._pending.pop(call_id, None)
        if pending is None:
            raise UnknownIdError(call_id)
        pending.completed = True
        pending.sink.fail(CallCancelledError(call_id, reason))

    def discard(self, call_id: Any, pending: PendingCall | None = None) -> bool:
        """Drop an entry without signalling its sink.

        When ``pending`` is given, only that exact registration is removed.
        """
        current = self._pending.get(call_id)
        if current is None or (pending is not None and current is not pending):
            return False
        del self._pending[call_id]
        current.completed = True
        return True

    def drain_all(self, reason: str, *, generation: int | None = None) -> int:
        """Fail and remove every entry (or every entry of one generation)."""
        doomed = [
            call_id
            for call_id, pending in self._pending.items()
            if generation is None or pending.generation == generation
        ]
        for call_id in doomed:
            pending = self._pending.pop(call_id)
            pending.completed = True
            pending.sink.fail(SessionLostError(reason, generation=pending.generation))
        if doomed:
            logger.info("Drained {} pending relay call(s): {}", len(doomed), reason)
        return len(doomed)

    def snapshot(self) -> list[dict[str, Any]]:
        return [
            {
                "id": p.call_id,
                "kind": p.kind.value,
                "generation": p.generation,
                "ageSeconds": round(p.age_seconds, 3),
            }
            for p in self._pending.values()
        ]
