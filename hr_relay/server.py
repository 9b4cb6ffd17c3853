"""WebSocket push and HTTP query endpoints on top of the hub."""

import asyncio
import contextlib
import json
import logging
from http import HTTPStatus
from urllib.parse import urlsplit

from websockets.asyncio.server import ServerConnection, serve
from websockets.exceptions import ConnectionClosed, ConnectionClosedError
from websockets.http11 import Request, Response

from .hub import Hub, Subscription
from .reading import Reading

logger = logging.getLogger(__name__)

WEBSOCKET_PATHS = {"/ws", "/websocket"}
QUERY_PATHS = {"/heart_rate", "/data"}


class RelayServer:
    """Serves the hub snapshot over HTTP and pushes readings over WebSocket."""

    def __init__(
        self,
        hub: Hub,
        host: str = "127.0.0.1",
        port: int = 8080,
        send_timeout: float = 0.5,
    ):
        self.host = host
        self.port = port
        self._hub = hub
        self._send_timeout = send_timeout
        self._clients: set[ServerConnection] = set()
        self._server = None

    def _client_info(self, websocket: ServerConnection) -> str:
        """Get client info string for logging."""
        addr = websocket.remote_address
        if addr:
            return f"{addr[0]}:{addr[1]}"
        return "unknown"

    def _process_request(self, connection: ServerConnection, request: Request) -> Response | None:
        """Answer plain HTTP queries; let WebSocket upgrades through."""
        path = urlsplit(request.path).path
        if path in WEBSOCKET_PATHS:
            return None
        if path in QUERY_PATHS:
            body = json.dumps(self._hub.query().to_dict()) + "\n"
            response = connection.respond(HTTPStatus.OK, body)
            del response.headers["Content-Type"]
            response.headers["Content-Type"] = "application/json"
            response.headers["Access-Control-Allow-Origin"] = "*"
            return response
        return connection.respond(HTTPStatus.NOT_FOUND, f"No route for {path}\n")

    async def _send(self, websocket: ServerConnection, reading: Reading) -> None:
        data = json.dumps(reading.to_dict())
        await asyncio.wait_for(websocket.send(data), timeout=self._send_timeout)

    async def _forward(self, websocket: ServerConnection, subscription: Subscription, snapshot: Reading) -> None:
        """Send the snapshot, then every reading, until the client goes away."""
        try:
            await self._send(websocket, snapshot)
            async for reading in subscription:
                await self._send(websocket, reading)
        except TimeoutError:
            logger.warning("Slow client %s, closing", self._client_info(websocket))
            await websocket.close()
        except ConnectionClosed:
            pass

    async def _handler(self, websocket: ServerConnection) -> None:
        """Handle a WebSocket connection."""
        subscription, snapshot = self._hub.subscribe()
        self._clients.add(websocket)
        logger.info("Client connected: %s (%d total)", self._client_info(websocket), len(self._clients))
        sender = asyncio.create_task(self._forward(websocket, subscription, snapshot))
        try:
            async for _ in websocket:
                pass  # We don't expect messages from clients
        except ConnectionClosedError:
            pass  # Client disconnected abruptly, this is normal
        finally:
            sender.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sender
            self._hub.unsubscribe(subscription)
            self._clients.discard(websocket)
            logger.info("Client disconnected: %s (%d total)", self._client_info(websocket), len(self._clients))

    async def start(self) -> None:
        """Start the server."""
        self._server = await serve(self._handler, self.host, self.port, process_request=self._process_request)
        logger.debug("Server started on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Stop the server."""
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            logger.debug("Server stopped")

    @property
    def client_count(self) -> int:
        """Number of connected clients."""
        return len(self._clients)
