"""JSON-RPC 2.0 frame helpers shared by the gateway, broker and peer."""

from __future__ import annotations

import json
from typing import Any

from brprelay.utils.exceptions import InvalidRequestError, MalformedFrameError, RpcErrorCode

WATCH_SUFFIX = "+watch"
END_FIELD = "end"

CallId = int | str


def is_watch_method(method: str) -> bool:
    """Watching methods stream many replies under one id."""
    return WATCH_SUFFIX in method


def validate_call_id(value: Any) -> CallId:
    """Return the id when it can be used for correlation, else raise."""
    # bool is an int subclass and would collide with 0/1 as a dict key.
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise InvalidRequestError(f"id must be a string or integer, got {type(value).__name__}", field="id")
    return value


def parse_request(payload: Any) -> tuple[CallId, str, dict[str, Any]]:
    """Validate an inbound call envelope. Returns (id, method, frame)."""
    if not isinstance(payload, dict):
        raise InvalidRequestError("request must be a JSON object")
    if payload.get("id") is None:
        raise InvalidRequestError("request id is required", field="id")
    call_id = validate_call_id(payload["id"])
    method = payload.get("method")
    if not isinstance(method, str) or not method:
        raise InvalidRequestError("Missing method field", field="method")
    frame = dict(payload)
    frame.setdefault("jsonrpc", "2.0")
    return call_id, method, frame


def decode_frame(text: str, *, max_bytes: int | None = None) -> dict[str, Any]:
    """Parse one inbound duplex message into a JSON object."""
    if max_bytes is not None and len(text.encode("utf-8")) > max_bytes:
        raise MalformedFrameError(f"frame exceeds {max_bytes} bytes")
    try:
        frame = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedFrameError(f"Parse error: {e}", raw=text) from e
    if not isinstance(frame, dict):
        raise MalformedFrameError("frame must be a JSON object", raw=text)
    return frame


def encode_frame(frame: dict[str, Any]) -> str:
    return json.dumps(frame, separators=(",", ":"), ensure_ascii=False)


def reply_id(frame: dict[str, Any]) -> CallId:
    """Extract the correlation id from a reply frame."""
    try:
        return validate_call_id(frame.get("id"))
    except InvalidRequestError as e:
        raise MalformedFrameError(f"reply has no usable id: {e.message}") from e


def is_request_frame(frame: dict[str, Any]) -> bool:
    return "method" in frame


def is_end_marker(frame: dict[str, Any]) -> bool:
    return frame.get(END_FIELD) is True


def has_reply_payload(frame: dict[str, Any]) -> bool:
    return "result" in frame or "error" in frame


def is_terminal_reply(frame: dict[str, Any], *, streaming: bool) -> bool:
    """Whether this reply completes its call.

    One-shot calls complete on any reply. Watches complete on the end
    marker or on an error reply.
    """
    if not streaming:
        return True
    return is_end_marker(frame) or "error" in frame


def build_result_response(call_id: CallId | None, result: Any, *, end: bool = False) -> dict[str, Any]:
    response: dict[str, Any] = {"jsonrpc": "2.0", "id": call_id, "result": result}
    if end:
        response[END_FIELD] = True
    return response


def build_end_response(call_id: CallId | None) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": call_id, END_FIELD: True}


def build_error_response(
    call_id: CallId | None,
    code: int,
    message: str,
    data: Any = None,
) -> dict[str, Any]:
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": call_id, "error": error}


def parse_error_response(message: str) -> dict[str, Any]:
    return build_error_response(None, RpcErrorCode.PARSE_ERROR, message)
