"""
Connected WebSocket clients of the notification relay.
"""

import asyncio
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TYPE_CHECKING

from shared.errors import ServiceUnavailableError
from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


@dataclass
class ClientConnection:
    connection_id: str
    websocket: Any
    client: Optional[str] = None
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class WebSocketConnectionManager:
    """Tracks connected clients and fans JSON messages out to them.

    A client whose send fails is dropped on the spot.
    """

    def __init__(self, max_connections: int = 1000, metrics: Optional["MetricsCollector"] = None):
        self.max_connections = max_connections
        self.metrics = metrics
        self.logger = get_logger("notifications.ws")
        self.connections: Dict[str, ClientConnection] = {}

    def __len__(self) -> int:
        return len(self.connections)

    def _changed(self, event: str, connection_id: str) -> None:
        if self.metrics:
            self.metrics.set_gauge("active_connections", len(self.connections))
        self.logger.info(event, connection_id=connection_id, connected=len(self.connections))

    def add_connection(self, websocket: Any, client: Optional[str] = None) -> str:
        """Register an accepted WebSocket and return its id.

        Raises ``ServiceUnavailableError`` once ``max_connections`` are open.
        """
        if len(self.connections) >= self.max_connections:
            raise ServiceUnavailableError(
                f"Maximum connections ({self.max_connections}) exceeded",
                details={"reason": "connection_limit"},
            )

        connection = ClientConnection(str(uuid.uuid4()), websocket, client)
        self.connections[connection.connection_id] = connection
        self._changed("Client connected", connection.connection_id)
        return connection.connection_id

    def remove_connection(self, connection_id: str) -> bool:
        if self.connections.pop(connection_id, None) is None:
            return False
        self._changed("Client disconnected", connection_id)
        return True

    async def send_message(self, connection_id: str, message: Dict[str, Any]) -> bool:
        connection = self.connections.get(connection_id)
        if connection is None:
            return False
        try:
            await connection.websocket.send_text(json.dumps(message))
        except Exception as exc:
            self.logger.warning("Dropping client after failed send", connection_id=connection_id, error=str(exc))
            self.remove_connection(connection_id)
            return False
        return True

    async def broadcast(self, message: Dict[str, Any]) -> int:
        """Send ``message`` to every client; returns how many received it."""
        results = await asyncio.gather(*(self.send_message(cid, message) for cid in list(self.connections)))
        delivered = sum(1 for ok in results if ok)
        self.logger.debug("Broadcast sent", message_event=message.get("event"), delivered=delivered,
                          dropped=len(results) - delivered)
        return delivered

    def get_connection_stats(self) -> Dict[str, Any]:
        return {"total_connections": len(self.connections), "max_connections": self.max_connections}
