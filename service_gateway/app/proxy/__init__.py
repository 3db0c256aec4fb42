"""
Upstream forwarding: HTTP requests and WebSocket relays.
"""

from .forwarder import Forwarder
from .ws_relay import WebSocketRelay

__all__ = ["Forwarder", "WebSocketRelay"]
