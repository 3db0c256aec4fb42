"""
Deployment notification relay for the Portico Access Layer.
"""

import json
from typing import Any, Dict, Optional, Union

from fastapi import WebSocket
from pydantic import BaseModel, Field

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import ServiceUnavailableError

from .deployments.history import DeploymentEvent, DeploymentHistory
from .ws.connection_manager import WebSocketConnectionManager

HISTORY_ON_CONNECT = 5
TRY_AGAIN_LATER = 1013


class NotifyUpdateRequest(BaseModel):
    """Deployment notice posted by CI."""
    version: str = Field(min_length=1)
    timestamp: Optional[Union[int, float, str]] = None
    project: Optional[str] = None


class NotificationService(BaseService):
    """Notification relay service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None):
        super().__init__("notifications", 6003, config or get_config("notifications", 6003))
        self.history = DeploymentHistory(self.config.deployment_history_size)
        self.ws_manager = WebSocketConnectionManager(
            max_connections=self.config.max_ws_connections,
            metrics=self.metrics,
        )
        self._setup_notification_routes()

        self.app.state.notification_service = self

    def _health_details(self) -> Dict[str, Any]:
        stats = self.ws_manager.get_connection_stats()
        return {
            "connected_clients": stats["total_connections"],
            "max_connections": stats["max_connections"],
            "deployment_history": len(self.history),
        }

    def _setup_notification_routes(self):
        """Set up relay routes."""

        @self.app.websocket("/ws")
        async def websocket_endpoint(websocket: WebSocket):
            """Deployment event stream."""
            await websocket.accept()
            client = f"{websocket.client.host}:{websocket.client.port}" if websocket.client else None
            try:
                connection_id = self.ws_manager.add_connection(websocket, client=client)
            except ServiceUnavailableError as e:
                self.logger.warning("WebSocket refused", reason=e.message)
                await websocket.close(code=TRY_AGAIN_LATER)
                return

            try:
                recent = self.history.recent(HISTORY_ON_CONNECT)
                if recent:
                    await websocket.send_text(json.dumps({
                        "event": "deployment-history",
                        "data": [event.to_dict() for event in recent],
                    }))

                while True:
                    message = await websocket.receive()
                    if message["type"] == "websocket.disconnect":
                        break
                    if message.get("text") == "ping":
                        await websocket.send_text("pong")
            finally:
                self.ws_manager.remove_connection(connection_id)

        @self.app.post("/notify-update")
        async def notify_update(payload: NotifyUpdateRequest):
            """Record a deployment and tell every connected client."""
            event = self.history.record(
                DeploymentEvent.create(payload.version, payload.timestamp, payload.project)
            )
            self.logger.info("Notifying new version", version=event.version, project=event.project)

            notified = await self.ws_manager.broadcast({
                "event": "app-updated",
                "data": {**event.to_dict(), "message": "New version available"},
            })
            self.metrics.increment_counter("broadcasts_total", event="app-updated")

            return {
                "success": True,
                "clients_notified": notified,
                "deployment": event.to_dict(),
            }

        @self.app.get("/latest-version")
        async def latest_version():
            latest = self.history.latest()
            return {
                "latest_version": latest.version if latest else None,
                "deployed_at": latest.deployed_at if latest else None,
                "total_deployments": len(self.history),
            }


def create_app(config: Optional[ServiceConfig] = None):
    """Create FastAPI application."""
    service = NotificationService(config)
    return service.app


if __name__ == "__main__":
    service = NotificationService()
    service.run()
