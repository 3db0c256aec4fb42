"""
Notification relay package for the Portico Access Layer.

The CI pipeline posts a deployment notice after every release; the relay
keeps a short history and pushes the notice to every connected browser
over a plain WebSocket.

- app.main: FastAPI app, HTTP and WebSocket endpoints.
- app.ws: WebSocket connection bookkeeping and broadcast.
- app.deployments: Bounded deployment history.
"""
