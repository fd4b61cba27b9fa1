"""Utility functions for brprelay."""

from brprelay.utils.exceptions import (
    RelayError,
    InvalidRequestError,
    DuplicateIdError,
    UnknownIdError,
    NoSessionError,
    SessionClosedError,
    SessionLostError,
    CallTimeoutError,
    CallCancelledError,
    WatchOverflowError,
    MalformedFrameError,
    RelayDisabledError,
    ErrorCategory,
    RpcErrorCode,
    classify_exception,
    sanitize_error_message,
)

__all__ = [
    "RelayError",
    "InvalidRequestError",
    "DuplicateIdError",
    "UnknownIdError",
    "NoSessionError",
    "SessionClosedError",
    "SessionLostError",
    "CallTimeoutError",
    "CallCancelledError",
    "WatchOverflowError",
    "MalformedFrameError",
    "RelayDisabledError",
    "ErrorCategory",
    "RpcErrorCode",
    "classify_exception",
    "sanitize_error_message",
]
