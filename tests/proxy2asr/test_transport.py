"""
Tests for the websockets-backed transport.
"""

import contextlib
import ssl
from unittest.mock import AsyncMock, MagicMock, call, patch

import pytest
import pytest_asyncio
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI
from websockets.asyncio.server import ServerConnection, serve
from websockets.frames import DATA_OPCODES, Close
from websockets.frames import Frame as WireFrame

from proxy2asr.config.models import SecurityConfig, WebSocketConfig
from proxy2asr.connection import create
from proxy2asr.exceptions import HandshakeError, ReceiveError
from proxy2asr.framing import Frame, Opcode
from proxy2asr.transport import WebsocketsTransport, build_ssl_context, open_websocket


def stream(*fragments, error=None):
    """Build what one recv_streaming() call yields."""

    async def generator():
        for fragment in fragments:
            yield fragment
        if error is not None:
            raise error

    return generator()


@pytest.fixture
def mock_websocket():
    """Create a mock websockets ClientConnection."""
    websocket = MagicMock()
    websocket.close = AsyncMock()
    websocket.close_code = None
    websocket.send_contexts = 0

    @contextlib.asynccontextmanager
    async def send_context():
        websocket.send_contexts += 1
        yield

    websocket.send_context = send_context
    return websocket


class TestWebsocketsTransportSend:
    """Test outbound frame transmission."""

    @pytest.mark.asyncio
    async def test_single_frame(self, mock_websocket):
        transport = WebsocketsTransport(mock_websocket)

        await transport.send_frames([Frame(b"hello", opcode=Opcode.TEXT)])

        assert mock_websocket.protocol.mock_calls == [call.send_text(b"hello", fin=True)]
        assert mock_websocket.send_contexts == 1

    @pytest.mark.asyncio
    async def test_each_frame_keeps_its_fin_bit(self, mock_websocket):
        transport = WebsocketsTransport(mock_websocket)
        frames = [
            Frame(b"a" * 4, fin=False, opcode=Opcode.BINARY),
            Frame(b"b" * 4, fin=False, opcode=Opcode.BINARY),
            Frame(b"c" * 2, fin=True, opcode=Opcode.BINARY),
        ]

        await transport.send_frames(frames)

        assert mock_websocket.protocol.mock_calls == [
            call.send_binary(b"aaaa", fin=False),
            call.send_continuation(b"bbbb", fin=False),
            call.send_continuation(b"cc", fin=True),
        ]
        assert mock_websocket.send_contexts == 3

    @pytest.mark.asyncio
    async def test_no_frames(self, mock_websocket):
        await WebsocketsTransport(mock_websocket).send_frames([])

        assert mock_websocket.protocol.mock_calls == []
        assert mock_websocket.send_contexts == 0


class TestWebsocketsTransportReceive:
    """Test inbound frame translation."""

    @pytest.mark.asyncio
    async def test_fragments_and_peer_close(self, mock_websocket):
        mock_websocket.recv_streaming = MagicMock(
            side_effect=[
                stream("Hel", "lo"),
                stream(b"\x00\x01"),
                stream(error=ConnectionClosed(Close(1001, "bye"), None)),
            ]
        )
        transport = WebsocketsTransport(mock_websocket)

        frames = [frame async for frame in transport.frames()]

        assert frames == [
            Frame(b"Hel", fin=False, opcode=Opcode.TEXT),
            Frame(b"lo", fin=True, opcode=Opcode.TEXT),
            Frame(b"\x00\x01", fin=True, opcode=Opcode.BINARY),
            Frame.close(1001, "bye"),
        ]

    @pytest.mark.asyncio
    async def test_abrupt_disconnect_raises(self, mock_websocket):
        mock_websocket.recv_streaming = MagicMock(
            side_effect=[stream("partial", error=ConnectionClosed(None, None))]
        )
        transport = WebsocketsTransport(mock_websocket)
        frames = transport.frames()

        with pytest.raises(ReceiveError, match="dropped without a close frame") as exc_info:
            await frames.__anext__()

        assert isinstance(exc_info.value.__cause__, ConnectionClosed)


class TestWebsocketsTransportLifecycle:
    """Test close and release."""

    @pytest.mark.asyncio
    async def test_close(self, mock_websocket):
        await WebsocketsTransport(mock_websocket).close(1000, "")

        mock_websocket.close.assert_awaited_once_with(code=1000, reason="")

    def test_release_aborts_once(self, mock_websocket):
        transport = WebsocketsTransport(mock_websocket)

        transport.release()
        transport.release()

        assert transport.released
        mock_websocket.transport.abort.assert_called_once()

    def test_release_skips_closed_socket(self, mock_websocket):
        mock_websocket.close_code = 1000
        transport = WebsocketsTransport(mock_websocket)

        transport.release()

        assert transport.released
        mock_websocket.transport.abort.assert_not_called()


class TestBuildSslContext:
    """Test TLS context construction."""

    def test_verifies_by_default(self):
        context = build_ssl_context(SecurityConfig())

        assert context.verify_mode == ssl.CERT_REQUIRED
        assert context.check_hostname is True

    def test_trust_all_certificates(self, caplog):
        context = build_ssl_context(SecurityConfig(trust_all_certificates=True))

        assert context.verify_mode == ssl.CERT_NONE
        assert context.check_hostname is False
        assert "verification is disabled" in caplog.text


class TestOpenWebsocket:
    """Test the default connector."""

    @pytest.mark.asyncio
    async def test_connect_arguments(self, mock_websocket):
        config = WebSocketConfig(open_timeout=5.0, ping_interval=20.0, ping_timeout=10.0)

        with patch(
            "proxy2asr.transport.websockets.connect",
            new=AsyncMock(return_value=mock_websocket),
        ) as connect:
            transport = await open_websocket(
                "ws://asr.local/stream",
                {"Authorization": "Bearer token"},
                config,
                SecurityConfig(),
            )

        assert isinstance(transport, WebsocketsTransport)
        assert transport.websocket is mock_websocket
        connect.assert_awaited_once_with(
            "ws://asr.local/stream",
            additional_headers={"Authorization": "Bearer token"},
            compression=None,
            open_timeout=5.0,
            close_timeout=config.close_timeout,
            ping_interval=20.0,
            ping_timeout=10.0,
            max_size=config.max_message_size,
        )

    @pytest.mark.asyncio
    async def test_secure_uri_gets_ssl_context(self, mock_websocket):
        with patch(
            "proxy2asr.transport.websockets.connect",
            new=AsyncMock(return_value=mock_websocket),
        ) as connect:
            await open_websocket(
                "wss://asr.local/stream", {}, WebSocketConfig(), SecurityConfig()
            )

        kwargs = connect.await_args.kwargs
        assert isinstance(kwargs["ssl"], ssl.SSLContext)
        assert kwargs["additional_headers"] is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error, message",
        [
            (InvalidHandshake("rejected"), "handshake with ws://asr.local/stream failed"),
            (InvalidURI("ws://asr.local/stream", "bad"), "handshake with ws://asr.local/stream failed"),
            (TimeoutError(), "timed out after 10.0s"),
            (ConnectionRefusedError("refused"), "Could not connect to ws://asr.local/stream"),
        ],
    )
    async def test_failures_map_to_handshake_error(self, error, message):
        with patch(
            "proxy2asr.transport.websockets.connect",
            new=AsyncMock(side_effect=error),
        ):
            with pytest.raises(HandshakeError, match=message) as exc_info:
                await open_websocket(
                    "ws://asr.local/stream", {}, WebSocketConfig(), SecurityConfig()
                )

        assert exc_info.value.__cause__ is error


@pytest_asyncio.fixture
async def frame_server():
    """Run a local WebSocket server recording every data frame it receives."""
    received = []

    class RecordingConnection(ServerConnection):
        def process_event(self, event):
            if isinstance(event, WireFrame) and event.opcode in DATA_OPCODES:
                received.append((event.opcode.name, len(event.data), event.fin))
            super().process_event(event)

    async def handler(websocket):
        await websocket.send(["Hel", "lo"])
        async for _ in websocket:
            pass

    async with serve(
        handler, "127.0.0.1", 0, create_connection=RecordingConnection
    ) as server:
        port = server.sockets[0].getsockname()[1]
        yield f"ws://127.0.0.1:{port}/stream", received


class TestLoopback:
    """Test frames as they arrive at a real server."""

    @pytest.mark.asyncio
    async def test_fragmented_binary_message_on_the_wire(self, frame_server, wait_until):
        uri, received = frame_server
        connection = create(uri, config=WebSocketConfig(open_timeout=5.0))
        connection.connect()
        assert await connection.wait_until_open()

        assert await connection.send_bytes(b"x" * 10000) is True
        await wait_until(lambda: len(received) >= 3)
        await connection.disconnect()

        assert received == [
            ("BINARY", 4096, False),
            ("CONT", 4096, False),
            ("CONT", 1808, True),
        ]

    @pytest.mark.asyncio
    async def test_small_text_message_is_one_frame(self, frame_server, wait_until):
        uri, received = frame_server
        connection = create(uri, config=WebSocketConfig(open_timeout=5.0))
        connection.connect()
        assert await connection.wait_until_open()

        await connection.send_text("hello")
        await connection.send_bytes(b"")
        await wait_until(lambda: received)
        await connection.disconnect()

        assert received == [("TEXT", 5, True)]

    @pytest.mark.asyncio
    async def test_fragmented_inbound_message_and_normal_close(self, frame_server, wait_until):
        uri, _ = frame_server
        messages = []
        connection = create(uri, config=WebSocketConfig(open_timeout=5.0))
        connection.on_message(lambda message, conn: messages.append(message))
        connection.connect()
        assert await connection.wait_until_open()

        await wait_until(lambda: messages)
        await connection.disconnect()
        await connection.wait_closed()

        assert messages == ["Hello"]
        assert connection.faulted is False
        assert connection.get_stats()["messages_received"] == 1
