"""Helpers for the JSON-RPC-over-HTTP endpoint."""

from __future__ import annotations

import json
from typing import Any, Callable

from fastapi.responses import JSONResponse, StreamingResponse

from brprelay.api.rpc.error_boundary import relay_error_result, unhandled_exception_result
from brprelay.relay.frames import parse_error_response
from brprelay.relay.gateway import CallGateway, WatchStream
from brprelay.utils.exceptions import InvalidRequestError, RelayError


def request_id_of(payload: Any) -> Any:
    """Best-effort id for error replies; None when the id is unusable."""
    if not isinstance(payload, dict):
        return None
    value = payload.get("id")
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        return None
    return value


def decode_jsonrpc_body(body: bytes) -> tuple[Any, dict[str, Any] | None]:
    """Return (payload, error_response). Exactly one of the two is set."""
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        return None, parse_error_response(f"Parse error: {e}")
    if isinstance(payload, list):
        exc = InvalidRequestError("batch requests are not supported")
        return None, {"jsonrpc": "2.0", "id": None, "error": {"code": exc.rpc_code, "message": exc.message}}
    return payload, None


def build_sse_event(frame: dict[str, Any]) -> str:
    """Build one SSE event line carrying a JSON-RPC reply."""
    return f"data: {json.dumps(frame, ensure_ascii=False)}\n\n"


async def build_call_response(
    *,
    gateway: CallGateway,
    payload: Any,
    log_warning: Callable[..., None],
    log_exception: Callable[..., None],
) -> JSONResponse:
    """Run a one-shot call and return the peer's reply (or a relay error) as JSON."""
    call_id = request_id_of(payload)
    try:
        reply = await gateway.call(payload)
    except RelayError as exc:
        reply = relay_error_result(call_id=call_id, exc=exc, log_warning=log_warning)
    except Exception as exc:
        reply = unhandled_exception_result(call_id=call_id, exc=exc, log_exception=log_exception)
    return JSONResponse(content=reply)


async def build_watch_response(
    *,
    gateway: CallGateway,
    payload: Any,
    log_warning: Callable[..., None],
    log_exception: Callable[..., None],
) -> JSONResponse | StreamingResponse:
    """Open a watch and stream each peer reply as an SSE event.

    Failures before the watch is open are returned as a plain JSON error.
    """
    call_id = request_id_of(payload)
    try:
        stream = await gateway.watch(payload)
    except RelayError as exc:
        return JSONResponse(content=relay_error_result(call_id=call_id, exc=exc, log_warning=log_warning))
    except Exception as exc:
        return JSONResponse(
            content=unhandled_exception_result(call_id=call_id, exc=exc, log_exception=log_exception)
        )
    return StreamingResponse(
        _watch_event_stream(stream, log_warning=log_warning),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


async def _watch_event_stream(stream: WatchStream, *, log_warning: Callable[..., None]):
    try:
        async for reply in stream:
            yield build_sse_event(reply)
    except RelayError as exc:
        yield build_sse_event(relay_error_result(call_id=stream.call_id, exc=exc, log_warning=log_warning))
    finally:
        stream.cancel("http stream closed")
