"""Tests for hr_relay.server module."""

import asyncio
import json
from http import HTTPStatus
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from websockets.datastructures import Headers
from websockets.exceptions import ConnectionClosed

from hr_relay.hub import Hub
from hr_relay.reading import HeartRateData, Reading
from hr_relay.server import RelayServer

TS = 1704910800000


def make_connection() -> MagicMock:
    """Mock server connection whose respond() mimics websockets' plain text response."""
    connection = MagicMock()

    def respond(status, text):
        response = MagicMock(status_code=status, body=text.encode())
        response.headers = Headers([("Content-Type", "text/plain; charset=utf-8")])
        return response

    connection.respond = MagicMock(side_effect=respond)
    return connection


def request(path: str) -> MagicMock:
    return MagicMock(path=path)


def connected_reading(bpm: int = 72) -> Reading:
    return Reading.connected(HeartRateData(bpm, skin_contact=True, battery_pct=80), timestamp_ms=TS)


class TestRelayServerInit:
    """Tests for RelayServer initialization."""

    def test_default_values(self):
        """RelayServer uses correct defaults."""
        server = RelayServer(Hub())
        assert server.host == "127.0.0.1"
        assert server.port == 8080
        assert server._send_timeout == 0.5
        assert server.client_count == 0
        assert server._server is None

    def test_custom_values(self):
        server = RelayServer(Hub(), host="0.0.0.0", port=9000, send_timeout=2.0)
        assert server.host == "0.0.0.0"
        assert server.port == 9000
        assert server._send_timeout == 2.0


class TestProcessRequest:
    """Tests for HTTP routing."""

    @pytest.mark.parametrize("path", ["/heart_rate", "/data", "/data?poll=1"])
    def test_query_returns_snapshot(self, path):
        hub = Hub()
        hub.publish(connected_reading())
        server = RelayServer(hub)

        response = server._process_request(make_connection(), request(path))

        assert response.status_code == HTTPStatus.OK
        assert json.loads(response.body) == {
            "timestamp": TS,
            "status": "connected",
            "heart_rate": 72,
            "skin_contact": True,
            "battery": 80,
        }
        assert response.headers["Content-Type"] == "application/json"
        assert response.headers["Access-Control-Allow-Origin"] == "*"

    def test_query_before_any_reading(self):
        """The snapshot starts out disconnected."""
        server = RelayServer(Hub())
        response = server._process_request(make_connection(), request("/heart_rate"))
        assert json.loads(response.body)["status"] == "disconnected"

    @pytest.mark.parametrize("path", ["/ws", "/websocket"])
    def test_websocket_paths_pass_through(self, path):
        server = RelayServer(Hub())
        connection = make_connection()
        assert server._process_request(connection, request(path)) is None
        connection.respond.assert_not_called()

    def test_unknown_path_not_found(self):
        server = RelayServer(Hub())
        response = server._process_request(make_connection(), request("/favicon.ico"))
        assert response.status_code == HTTPStatus.NOT_FOUND


class TestForward:
    """Tests for pushing readings to a WebSocket client."""

    @pytest.mark.asyncio
    async def test_snapshot_then_readings(self, mock_websocket):
        hub = Hub()
        hub.publish(connected_reading(70))
        server = RelayServer(hub)
        subscription, snapshot = hub.subscribe()

        hub.publish(connected_reading(71))
        hub.unsubscribe(subscription)
        await server._forward(mock_websocket, subscription, snapshot)

        sent = [json.loads(call.args[0])["heart_rate"] for call in mock_websocket.send.call_args_list]
        assert sent == [70, 71]

    @pytest.mark.asyncio
    async def test_slow_client_closed(self, mock_websocket):
        """A client that cannot keep up is disconnected."""
        hub = Hub()
        server = RelayServer(hub, send_timeout=0.01)
        subscription, snapshot = hub.subscribe()

        async def slow_send(_):
            await asyncio.sleep(1)

        mock_websocket.send = slow_send

        await server._forward(mock_websocket, subscription, snapshot)
        mock_websocket.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_closed_connection_ends_quietly(self, mock_websocket):
        hub = Hub()
        server = RelayServer(hub)
        subscription, snapshot = hub.subscribe()
        mock_websocket.send.side_effect = ConnectionClosed(None, None)

        await server._forward(mock_websocket, subscription, snapshot)
        mock_websocket.close.assert_not_called()


class TestHandler:
    """Tests for _handler method."""

    @pytest.mark.asyncio
    async def test_handler_sends_snapshot_and_cleans_up(self, mock_websocket):
        hub = Hub()
        hub.publish(connected_reading(72))
        server = RelayServer(hub)

        async def close_soon(*args):
            await asyncio.sleep(0.02)
            raise StopAsyncIteration

        mock_websocket.__aiter__ = lambda self: self
        mock_websocket.__anext__ = AsyncMock(side_effect=close_soon)

        await server._handler(mock_websocket)

        assert json.loads(mock_websocket.send.call_args[0][0])["heart_rate"] == 72
        assert server.client_count == 0
        assert hub.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_handler_unsubscribes_on_exception(self, mock_websocket):
        hub = Hub()
        server = RelayServer(hub)

        mock_websocket.__aiter__ = lambda self: self
        mock_websocket.__anext__ = AsyncMock(side_effect=Exception("Connection lost"))

        with pytest.raises(Exception, match="Connection lost"):
            await server._handler(mock_websocket)

        assert mock_websocket not in server._clients
        assert hub.subscriber_count == 0


class TestServerLifecycle:
    """Tests for start/stop methods."""

    @pytest.mark.asyncio
    async def test_start_creates_server(self):
        """start() serves WebSocket and HTTP on one port."""
        with patch("hr_relay.server.serve") as mock_serve:
            mock_server = MagicMock()

            async def serve_coro(*args, **kwargs):
                return mock_server

            mock_serve.side_effect = serve_coro

            server = RelayServer(Hub(), host="localhost", port=8080)
            await server.start()

            call_args = mock_serve.call_args
            assert call_args[0][1] == "localhost"
            assert call_args[0][2] == 8080
            assert call_args[1]["process_request"] == server._process_request
            assert server._server == mock_server

    @pytest.mark.asyncio
    async def test_stop_closes_server(self):
        mock_server = MagicMock()
        mock_server.wait_closed = AsyncMock()

        server = RelayServer(Hub())
        server._server = mock_server
        await server.stop()

        mock_server.close.assert_called_once()
        mock_server.wait_closed.assert_called_once()

    @pytest.mark.asyncio
    async def test_stop_without_server(self):
        await RelayServer(Hub()).stop()
