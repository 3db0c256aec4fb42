"""
WebSocket connection management for the notification relay.
"""

from .connection_manager import ClientConnection, WebSocketConnectionManager

__all__ = ["ClientConnection", "WebSocketConnectionManager"]
