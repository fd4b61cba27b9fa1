"""Duplex peer: connects out to the relay and serves JSON-RPC requests.

This is the side that cannot listen for HTTP. It dials the relay's
WebSocket, receives request frames, runs a local handler per method and
writes the reply frames back on the same connection.
"""

from __future__ import annotations

import asyncio
import inspect
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any
from urllib.parse import urlparse, urlunparse

import websockets
from loguru import logger

from brprelay.config.schema import DEFAULT_RELAY_PATH
from brprelay.relay.frames import (
    build_end_response,
    build_error_response,
    build_result_response,
    encode_frame,
    is_watch_method,
    parse_error_response,
)
from brprelay.utils.exceptions import RpcErrorCode, sanitize_error_message

WATCH_CHANNEL_SIZE = 8

Handler = Callable[[Any], Awaitable[Any] | AsyncIterator[Any]]


class MethodError(Exception):
    """Raised by a handler to answer with a specific JSON-RPC error."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


def resolve_relay_url(url: str | None, base_url: str, path: str = DEFAULT_RELAY_PATH) -> str:
    """Explicit url wins; otherwise map an http(s) base onto ws(s)://host/path."""
    if url:
        return url
    parsed = urlparse(base_url)
    scheme = {"https": "wss", "wss": "wss"}.get(parsed.scheme, "ws")
    return urlunparse(parsed._replace(scheme=scheme, path="/" + path.strip("/"), params="", query="", fragment=""))


class RelayStatus:
    """Connection flag shared with the host application."""

    def __init__(self):
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    def set(self, value: bool) -> None:
        self._connected = value


class RelayPeer:
    """Dial the relay, serve requests, reconnect with capped backoff."""

    def __init__(
        self,
        *,
        url: str,
        handlers: dict[str, Handler] | None = None,
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 10.0,
    ):
        self.url = url
        self.status = RelayStatus()
        self._handlers: dict[str, Handler] = dict(handlers or {})
        self._reconnect_delay = reconnect_delay
        self._max_reconnect_delay = max_reconnect_delay
        self._running = False
        self._ws: Any = None
        self._tasks: set[asyncio.Task] = set()

    @classmethod
    def from_config(cls, peer_config: Any, handlers: dict[str, Handler] | None = None) -> "RelayPeer":
        return cls(
            url=resolve_relay_url(peer_config.url, peer_config.base_url, peer_config.path),
            handlers=handlers,
            reconnect_delay=peer_config.reconnect_delay_seconds,
            max_reconnect_delay=peer_config.max_reconnect_delay_seconds,
        )

    def register(self, method: str, handler: Handler) -> None:
        """Register a handler. ``+watch`` methods must return an async iterator."""
        self._handlers[method] = handler

    async def run_forever(self) -> None:
        self._running = True
        delay = self._reconnect_delay
        while self._running:
            try:
                logger.info("BRP relay peer: connecting to {}", self.url)
                async with websockets.connect(self.url, ping_interval=20, ping_timeout=10) as ws:
                    self._ws = ws
                    self.status.set(True)
                    delay = self._reconnect_delay
                    logger.info("BRP relay peer: connected")
                    await self.serve_connection(ws)
                logger.warning("BRP relay peer: disconnected")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("BRP relay peer: connection error: {}", e)
            finally:
                self.status.set(False)
                self._ws = None
            if not self._running:
                break
            logger.info("BRP relay peer: reconnecting in {}s", delay)
            await asyncio.sleep(delay)
            delay = min(delay * 2, self._max_reconnect_delay)

    async def stop(self) -> None:
        self._running = False
        for task in list(self._tasks):
            task.cancel()
        if self._ws is not None:
            await self._ws.close()

    async def serve_connection(self, ws: Any) -> None:
        """Spawn one task per inbound request until the socket closes."""
        try:
            async for message in ws:
                if not isinstance(message, str):
                    continue
                task = asyncio.create_task(self.process_request(message, ws))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
        finally:
            for task in list(self._tasks):
                task.cancel()

    async def process_request(self, text: str, ws: Any) -> None:
        """Handle a single JSON-RPC request frame from the relay."""
        try:
            request = json.loads(text)
        except json.JSONDecodeError as e:
            await self._send(ws, parse_error_response(f"Parse error: {e}"))
            return
        if not isinstance(request, dict):
            await self._send(
                ws, build_error_response(None, RpcErrorCode.INVALID_REQUEST, "request must be a JSON object")
            )
            return

        call_id = request.get("id")
        method = request.get("method")
        if not isinstance(method, str) or not method:
            await self._send(ws, build_error_response(call_id, RpcErrorCode.INVALID_REQUEST, "Missing method field"))
            return
        handler = self._handlers.get(method)
        if handler is None:
            await self._send(
                ws, build_error_response(call_id, RpcErrorCode.METHOD_NOT_FOUND, f"Method not found: {method}")
            )
            return

        params = request.get("params")
        if is_watch_method(method):
            await self._stream_watch(ws, call_id, method, handler, params)
            return
        try:
            result = handler(params)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            await self._send(ws, self._error_for(call_id, method, e))
            return
        await self._send(ws, build_result_response(call_id, result))

    async def _stream_watch(self, ws: Any, call_id: Any, method: str, handler: Handler, params: Any) -> None:
        channel: asyncio.Queue[tuple[str, Any]] = asyncio.Queue(maxsize=WATCH_CHANNEL_SIZE)

        async def produce() -> None:
            try:
                source = handler(params)
                if inspect.isawaitable(source):
                    source = await source
                async for item in source:
                    await channel.put(("item", item))
                await channel.put(("end", None))
            except Exception as e:
                await channel.put(("error", e))

        producer = asyncio.create_task(produce())
        try:
            while True:
                kind, value = await channel.get()
                if kind == "item":
                    if not await self._send(ws, build_result_response(call_id, value)):
                        break
                elif kind == "error":
                    await self._send(ws, self._error_for(call_id, method, value))
                    break
                else:
                    await self._send(ws, build_end_response(call_id))
                    break
        finally:
            producer.cancel()

    @staticmethod
    def _error_for(call_id: Any, method: str, exc: Exception) -> dict[str, Any]:
        if isinstance(exc, MethodError):
            return build_error_response(call_id, exc.code, exc.message, exc.data)
        logger.opt(exception=exc).error("BRP relay peer: method {} failed", method)
        return build_error_response(call_id, RpcErrorCode.INTERNAL_ERROR, sanitize_error_message(str(exc)))

    @staticmethod
    async def _send(ws: Any, frame: dict[str, Any]) -> bool:
        try:
            await ws.send(encode_frame(frame))
            return True
        except Exception as e:
            logger.debug("BRP relay peer: send failed: {}", e)
            return False
