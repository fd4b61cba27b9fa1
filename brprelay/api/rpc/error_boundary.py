"""Common error-boundary helpers: relay errors to JSON-RPC errors and HTTP status."""

from __future__ import annotations

from typing import Any, Callable

from brprelay.utils.exceptions import (
    ErrorCategory,
    RelayError,
    RpcErrorCode,
    classify_exception,
    sanitize_error_message,
)


def relay_error_object(exc: RelayError) -> dict[str, Any]:
    """Build the JSON-RPC ``error`` member for a relay failure."""
    data: dict[str, Any] = {"error_code": exc.code, "category": exc.category.value}
    if exc.details:
        data["details"] = exc.details
    return {"code": exc.rpc_code, "message": exc.message, "data": data}


def relay_error_result(
    *,
    call_id: Any,
    exc: RelayError,
    log_warning: Callable[..., None],
) -> dict[str, Any]:
    """Map a RelayError to a JSON-RPC error response for ``call_id``."""
    log_warning("Relay call id={!r} failed with {}: {}", call_id, exc.code, exc.message)
    return {"jsonrpc": "2.0", "id": call_id, "error": relay_error_object(exc)}


def unhandled_exception_result(
    *,
    call_id: Any,
    exc: Exception,
    log_exception: Callable[..., None],
) -> dict[str, Any]:
    """Map unexpected exceptions to standardized internal-error responses."""
    code, category, _ = classify_exception(exc)
    sanitized = sanitize_error_message(str(exc))
    log_exception("Relay call id={!r} failed with [{}]: {}", call_id, code, sanitized)
    return {
        "jsonrpc": "2.0",
        "id": call_id,
        "error": {
            "code": RpcErrorCode.INTERNAL_ERROR,
            "message": sanitized or "internal error",
            "data": {"error_code": code, "category": category.value},
        },
    }


_CATEGORY_TO_STATUS = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.TIMEOUT: 504,
    ErrorCategory.RETRYABLE: 503,
    ErrorCategory.UNAVAILABLE: 503,
    ErrorCategory.CANCELLED: 499,
    ErrorCategory.RECOVERABLE: 500,
    ErrorCategory.FATAL: 500,
}


def classify_http_status(exc: Exception) -> int:
    """Map exception to appropriate HTTP status code."""
    if isinstance(exc, RelayError):
        return _CATEGORY_TO_STATUS.get(exc.category, 500)
    _, category, _ = classify_exception(exc)
    return _CATEGORY_TO_STATUS.get(category, 500)
