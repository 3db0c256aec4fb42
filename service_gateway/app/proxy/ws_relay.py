"""
WebSocket relay between gateway clients and upstream services.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import websockets
from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect, WebSocketState
from websockets.exceptions import ConnectionClosed, WebSocketException

from shared.logging import get_logger

from ..routing.routes import Route, RouteTable, raw_request_path

POLICY_VIOLATION = 1008
INTERNAL_ERROR = 1011
NORMAL_CLOSURE = 1000


def upstream_ws_url(route: Route, path: str, query: str = "") -> str:
    """Upstream WebSocket URL for ``path``; http maps to ws, https to wss."""
    url = route.upstream_url(path, query)
    if url.startswith("https://"):
        return "wss://" + url[len("https://"):]
    if url.startswith("http://"):
        return "ws://" + url[len("http://"):]
    return url


class WebSocketRelay:
    """Pumps frames between a client socket and an upstream socket until
    either side goes away."""

    def __init__(
        self,
        routes: RouteTable,
        *,
        connect: Callable[[str], Awaitable[Any]] = websockets.connect,
    ):
        self.routes = routes
        self._connect = connect
        self.logger = get_logger("gateway.ws_relay")

    async def relay(self, websocket: WebSocket) -> None:
        path = websocket.url.path
        route = self.routes.match(path)
        if route is None or not route.websocket:
            self.logger.warning("WebSocket rejected", path=path, route=route.name if route else None)
            await websocket.close(code=POLICY_VIOLATION)
            return

        await websocket.accept()
        url = upstream_ws_url(route, raw_request_path(websocket.scope), websocket.url.query)
        try:
            upstream = await self._connect(url)
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            self.logger.error("Upstream WebSocket connection failed", route=route.name, url=url, error=str(e))
            await websocket.close(code=INTERNAL_ERROR)
            return

        self.logger.info("WebSocket relay opened", route=route.name, url=url)
        try:
            await self._pump(websocket, upstream)
        finally:
            await upstream.close()
            if (websocket.client_state == WebSocketState.CONNECTED
                    and websocket.application_state == WebSocketState.CONNECTED):
                await websocket.close(code=NORMAL_CLOSURE)
            self.logger.info("WebSocket relay closed", route=route.name)

    async def _pump(self, websocket: WebSocket, upstream: Any) -> None:
        tasks = {
            asyncio.create_task(self._client_to_upstream(websocket, upstream)),
            asyncio.create_task(self._upstream_to_client(websocket, upstream)),
        }
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            # Pumps never outlive the relay, even when the relay itself is cancelled.
            for task in tasks:
                task.cancel()
            await asyncio.wait(tasks)
        for task in done:
            if task.cancelled():
                continue
            error = task.exception()
            if error is not None:
                self.logger.warning("WebSocket relay ended with error", error=str(error))

    async def _client_to_upstream(self, websocket: WebSocket, upstream: Any) -> None:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                return
            if message.get("text") is not None:
                await upstream.send(message["text"])
            elif message.get("bytes") is not None:
                await upstream.send(message["bytes"])

    async def _upstream_to_client(self, websocket: WebSocket, upstream: Any) -> None:
        try:
            async for message in upstream:
                if isinstance(message, bytes):
                    await websocket.send_bytes(message)
                else:
                    await websocket.send_text(message)
        except ConnectionClosed:
            return
        except WebSocketDisconnect:
            return
