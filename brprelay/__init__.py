"""
brprelay - bridge BRP JSON-RPC over HTTP to a duplex WebSocket peer
"""

__version__ = "0.1.0"
__logo__ = "🔁"
