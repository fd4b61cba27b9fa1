"""Remote peer side of the relay."""

from brprelay.peer.client import MethodError, RelayPeer, RelayStatus, resolve_relay_url

__all__ = ["MethodError", "RelayPeer", "RelayStatus", "resolve_relay_url"]
