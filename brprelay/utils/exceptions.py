"""
Exception hierarchy and error classification for brprelay.

Provides:
- Relay error classes carrying a string code, a category and a JSON-RPC code
- Error categorization (retryable, validation, timeout, ...)
- Safe error message formatting (no sensitive data leak)
"""

from __future__ import annotations

import asyncio
import json
import re
from enum import Enum
from typing import Any


class ErrorCategory(Enum):
    """Error categories for classification."""
    RECOVERABLE = "recoverable"
    RETRYABLE = "retryable"
    FATAL = "fatal"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    UNAVAILABLE = "unavailable"


class RpcErrorCode:
    """JSON-RPC 2.0 error codes, standard and relay-reserved."""
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603
    NO_SESSION = -32001
    TIMEOUT = -32002
    DUPLICATE_ID = -32003
    SESSION_LOST = -32004
    WATCH_OVERFLOW = -32005
    RELAY_DISABLED = -32006
    CANCELLED = -32007


class RelayError(Exception):
    """Base exception for all brprelay errors."""

    rpc_code: int = RpcErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        category: ErrorCategory = ErrorCategory.FATAL,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "category": self.category.value,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class InvalidRequestError(RelayError):
    """Inbound call envelope is not a usable JSON-RPC request."""

    rpc_code = RpcErrorCode.INVALID_REQUEST

    def __init__(self, message: str, field: str | None = None):
        details = {"field": field} if field else {}
        super().__init__(message, code="INVALID_REQUEST", category=ErrorCategory.VALIDATION, details=details)


class DuplicateIdError(RelayError):
    """A call with the same identifier is already in flight."""

    rpc_code = RpcErrorCode.DUPLICATE_ID

    def __init__(self, call_id: Any):
        super().__init__(
            f"call id already pending: {call_id!r}",
            code="DUPLICATE_ID",
            category=ErrorCategory.VALIDATION,
            details={"id": call_id},
        )


class UnknownIdError(RelayError):
    """No pending call matches the identifier."""

    rpc_code = RpcErrorCode.INTERNAL_ERROR

    def __init__(self, call_id: Any):
        super().__init__(
            f"no pending call for id: {call_id!r}",
            code="UNKNOWN_ID",
            category=ErrorCategory.NOT_FOUND,
            details={"id": call_id},
        )


class NoSessionError(RelayError):
    """No duplex peer is connected; callers should retry later."""

    rpc_code = RpcErrorCode.NO_SESSION

    def __init__(self, message: str = "no relay peer connected"):
        super().__init__(message, code="NO_SESSION", category=ErrorCategory.RETRYABLE)


class SessionClosedError(RelayError):
    """Send attempted on a duplex session that is no longer alive."""

    rpc_code = RpcErrorCode.NO_SESSION

    def __init__(self, generation: int | None = None, message: str = "relay session is closed"):
        details = {"generation": generation} if generation is not None else {}
        super().__init__(message, code="SESSION_CLOSED", category=ErrorCategory.RETRYABLE, details=details)


class SessionLostError(RelayError):
    """The session a pending call was sent on ended before it completed."""

    rpc_code = RpcErrorCode.SESSION_LOST

    def __init__(self, reason: str = "session lost", generation: int | None = None):
        details = {"generation": generation} if generation is not None else {}
        super().__init__(reason, code="SESSION_LOST", category=ErrorCategory.RETRYABLE, details=details)


class CallTimeoutError(RelayError):
    """No reply (or no completed write) within the caller's deadline."""

    rpc_code = RpcErrorCode.TIMEOUT

    def __init__(self, operation: str, timeout_seconds: float):
        super().__init__(
            f"Operation '{operation}' timed out after {timeout_seconds}s",
            code="TIMEOUT",
            category=ErrorCategory.TIMEOUT,
            details={"operation": operation, "timeout_seconds": timeout_seconds},
        )


class CallCancelledError(RelayError):
    """The pending call was cancelled before a terminal reply arrived."""

    rpc_code = RpcErrorCode.CANCELLED

    def __init__(self, call_id: Any, reason: str = "cancelled"):
        super().__init__(reason, code="CANCELLED", category=ErrorCategory.CANCELLED, details={"id": call_id})


class WatchOverflowError(RelayError):
    """A watch consumer fell behind and its bounded buffer filled up."""

    rpc_code = RpcErrorCode.WATCH_OVERFLOW

    def __init__(self, call_id: Any, capacity: int):
        super().__init__(
            f"watch buffer overflow for id {call_id!r} (capacity {capacity})",
            code="WATCH_OVERFLOW",
            category=ErrorCategory.RECOVERABLE,
            details={"id": call_id, "capacity": capacity},
        )


class MalformedFrameError(RelayError):
    """Inbound duplex frame could not be parsed or lacks a usable id."""

    rpc_code = RpcErrorCode.PARSE_ERROR

    def __init__(self, message: str, raw: str | None = None):
        details = {"raw": raw[:200]} if raw else {}
        super().__init__(message, code="MALFORMED_FRAME", category=ErrorCategory.VALIDATION, details=details)


class RelayDisabledError(RelayError):
    """The relay is switched off in configuration."""

    rpc_code = RpcErrorCode.RELAY_DISABLED

    def __init__(self):
        super().__init__("relay is disabled", code="RELAY_DISABLED", category=ErrorCategory.UNAVAILABLE)


_SENSITIVE_PATTERNS = [
    re.compile(r"(api[_-]?key|token|secret|password|auth)[=:]\s*['\"]?([^\s'\"]+)['\"]?", re.IGNORECASE),
    re.compile(r"bearer\s+[a-zA-Z0-9\-._~+/]+=*", re.IGNORECASE),
    re.compile(r"[a-zA-Z0-9]{32,}"),
]


def sanitize_error_message(message: str, replacement: str = "[REDACTED]") -> str:
    """Remove sensitive information from error messages."""
    sanitized = message
    for pattern in _SENSITIVE_PATTERNS:
        sanitized = pattern.sub(replacement, sanitized)
    return sanitized


def classify_exception(exc: Exception) -> tuple[str, ErrorCategory, bool]:
    """
    Classify an exception and return (error_code, category, should_retry).

    Returns:
        Tuple of (error_code, category, should_retry)
    """
    if isinstance(exc, RelayError):
        return exc.code, exc.category, exc.category == ErrorCategory.RETRYABLE

    if isinstance(exc, asyncio.TimeoutError):
        return "TIMEOUT", ErrorCategory.TIMEOUT, True

    if isinstance(exc, ConnectionError):
        return "CONNECTION_ERROR", ErrorCategory.RETRYABLE, True

    if isinstance(exc, json.JSONDecodeError):
        return "JSON_PARSE_ERROR", ErrorCategory.VALIDATION, False

    if isinstance(exc, (ValueError, KeyError, TypeError)):
        return "INVALID_VALUE", ErrorCategory.VALIDATION, False

    exc_str = str(exc).lower()
    if "timeout" in exc_str or "timed out" in exc_str:
        return "TIMEOUT", ErrorCategory.TIMEOUT, True

    if "connection" in exc_str or "closed" in exc_str:
        return "CONNECTION_ERROR", ErrorCategory.RETRYABLE, True

    return "INTERNAL_ERROR", ErrorCategory.FATAL, False
