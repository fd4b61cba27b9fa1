"""Duplex session: the single live WebSocket to the remote peer."""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator
from typing import Any

from loguru import logger

from brprelay.relay.frames import decode_frame, encode_frame
from brprelay.utils.exceptions import CallTimeoutError, MalformedFrameError, SessionClosedError

CLOSE_NORMAL = 1000
CLOSE_SUPERSEDED = 4000


class DuplexSession:
    """Owns one accepted WebSocket and its frame traffic.

    ``websocket`` is an ASGI-style socket (Starlette ``WebSocket``): it must
    provide ``receive()`` returning ASGI messages, ``send_text()`` and
    ``close(code, reason)``.
    """

    def __init__(
        self,
        websocket: Any,
        *,
        generation: int,
        send_timeout: float | None = 5.0,
        max_frame_bytes: int | None = None,
        conn_id: str | None = None,
    ):
        self.websocket = websocket
        self.generation = generation
        self.conn_id = conn_id or f"relay_{generation}"
        self.connected_at = time.time()
        self._send_timeout = send_timeout
        self._max_frame_bytes = max_frame_bytes
        self._send_lock = asyncio.Lock()
        self._alive = True
        self.close_reason: str | None = None
        self.frames_in = 0
        self.frames_out = 0
        self.frames_dropped = 0

    @property
    def alive(self) -> bool:
        return self._alive

    async def send(self, frame: dict[str, Any]) -> None:
        """Write one frame. One writer at a time; no outbound queue."""
        if not self._alive:
            raise SessionClosedError(self.generation)
        text = encode_frame(frame)
        try:
            async with self._send_lock:
                if not self._alive:
                    raise SessionClosedError(self.generation)
                if self._send_timeout is None:
                    await self.websocket.send_text(text)
                else:
                    await asyncio.wait_for(self.websocket.send_text(text), timeout=self._send_timeout)
        except asyncio.TimeoutError as e:
            raise CallTimeoutError("relay send", self._send_timeout or 0) from e
        except (RuntimeError, ConnectionError, OSError) as e:
            # The transport is gone even if the reader has not noticed yet.
            self._alive = False
            self.close_reason = self.close_reason or f"send failed: {e}"
            raise SessionClosedError(self.generation) from e
        self.frames_out += 1

    async def frames(self) -> AsyncIterator[dict[str, Any]]:
        """Yield parsed inbound frames until the connection ends.

        Frames that cannot be parsed are logged and skipped. The sequence
        ends on disconnect, on a transport-level receive failure, or once
        :meth:`close` has been called.
        """
        while self._alive:
            try:
                message = await self.websocket.receive()
            except (RuntimeError, ConnectionError, OSError) as e:
                logger.warning("Relay session gen={} receive failed: {}", self.generation, e)
                self.close_reason = self.close_reason or f"receive failed: {e}"
                break
            mtype = message.get("type")
            if mtype == "websocket.disconnect":
                self.close_reason = self.close_reason or f"peer disconnected (code={message.get('code')})"
                break
            if mtype != "websocket.receive":
                continue
            text = message.get("text")
            if text is None:
                raw = message.get("bytes")
                if raw is None:
                    continue
                try:
                    text = raw.decode("utf-8")
                except UnicodeDecodeError:
                    self.frames_dropped += 1
                    logger.warning("Relay session gen={} dropped non-UTF-8 binary frame", self.generation)
                    continue
            try:
                frame = decode_frame(text, max_bytes=self._max_frame_bytes)
            except MalformedFrameError as e:
                self.frames_dropped += 1
                logger.warning("Relay session gen={} dropped malformed frame: {}", self.generation, e.message)
                continue
            self.frames_in += 1
            yield frame
        self._alive = False

    async def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        self._alive = False
        self.close_reason = self.close_reason or reason or "closed by relay"
        try:
            await self.websocket.close(code=code, reason=reason)
        except Exception as e:
            logger.debug("Relay session gen={} close ignored: {}", self.generation, e)

    def info(self) -> dict[str, Any]:
        return {
            "connId": self.conn_id,
            "generation": self.generation,
            "alive": self._alive,
            "connectedAt": self.connected_at,
            "framesIn": self.frames_in,
            "framesOut": self.frames_out,
            "framesDropped": self.frames_dropped,
            "closeReason": self.close_reason,
        }
