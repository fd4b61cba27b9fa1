"""Relay websocket and error-boundary helpers."""
