"""
Transport layer for WebSocket connections.

A transport is the socket handle owned by a WebSocketConnection. The
connection only ever talks to it in terms of frames:

- send_frames(): transmit the ordered frames of one logical message
- frames(): async iterator over inbound frames; yields a CLOSE frame when the
  peer closes the connection and raises when the connection drops abruptly
- close(): perform the close handshake
- release(): drop the underlying socket immediately; safe to call repeatedly

WebsocketsTransport implements this on top of the ``websockets`` asyncio client.
"""

import asyncio
import logging
import ssl
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional, Protocol, Sequence

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from proxy2asr.config.constants import NORMAL_CLOSURE
from proxy2asr.config.models import SecurityConfig, WebSocketConfig
from proxy2asr.exceptions import HandshakeError, ReceiveError
from proxy2asr.framing import Frame, Opcode
from proxy2asr.utils.websocket_utils import WebSocketUtils

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Frame-level interface between a connection and its socket."""

    async def send_frames(self, frames: Sequence[Frame]) -> None:
        ...

    def frames(self) -> AsyncIterator[Frame]:
        ...

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        ...

    def release(self) -> None:
        ...


# (uri, headers, config, security) -> open transport
Connector = Callable[
    [str, Dict[str, str], WebSocketConfig, SecurityConfig], Awaitable[Transport]
]


def build_ssl_context(security: SecurityConfig) -> ssl.SSLContext:
    """
    Build the TLS context used for ``wss://`` endpoints.

    Certificates and hostnames are verified against the system trust store, or
    against ``security.ca_file`` when set. ``trust_all_certificates`` turns
    verification off entirely.
    """
    if security.trust_all_certificates:
        logger.warning(
            "TLS certificate verification is disabled (trust_all_certificates=True)"
        )
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        return context

    cafile = str(security.ca_file) if security.ca_file else None
    return ssl.create_default_context(cafile=cafile)


class WebsocketsTransport:
    """Transport backed by a ``websockets`` ClientConnection."""

    def __init__(self, websocket: ClientConnection):
        self.websocket = websocket
        self._released = False
        self._send_lock = asyncio.Lock()

    @property
    def released(self) -> bool:
        return self._released

    async def send_frames(self, frames: Sequence[Frame]) -> None:
        """
        Transmit the frames of one logical message in order.

        Each frame goes out as its own wire frame with its own fin bit: the
        first as a text or binary frame, the rest as continuation frames. The
        socket is drained after every frame and messages never interleave.

        Raises:
            ConnectionClosed: If the connection is closing or closed
        """
        if not frames:
            return

        protocol = self.websocket.protocol
        async with self._send_lock:
            first = frames[0]
            async with self.websocket.send_context():
                if first.opcode is Opcode.TEXT:
                    protocol.send_text(first.payload, fin=first.fin)
                else:
                    protocol.send_binary(first.payload, fin=first.fin)

            for frame in frames[1:]:
                async with self.websocket.send_context():
                    protocol.send_continuation(frame.payload, fin=frame.fin)

    async def frames(self) -> AsyncIterator[Frame]:
        """Yield inbound frames until the connection closes."""
        while True:
            pending: Optional[bytes] = None
            opcode = Opcode.TEXT
            try:
                # Each fragment is held back until the next one arrives so the
                # last fragment of the message can be flagged final.
                async for fragment in self.websocket.recv_streaming():
                    if pending is not None:
                        yield Frame(pending, fin=False, opcode=opcode)
                    if isinstance(fragment, str):
                        opcode = Opcode.TEXT
                        pending = fragment.encode("utf-8")
                    else:
                        opcode = Opcode.BINARY
                        pending = bytes(fragment)
            except ConnectionClosed as exc:
                if exc.rcvd is None:
                    raise ReceiveError(f"Connection dropped without a close frame: {exc}") from exc
                yield Frame.close(exc.rcvd.code, exc.rcvd.reason)
                return

            yield Frame(pending if pending is not None else b"", fin=True, opcode=opcode)

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        await self.websocket.close(code=code, reason=reason)

    def release(self) -> None:
        if self._released:
            return
        self._released = True

        if WebSocketUtils.is_websocket_closed(self.websocket):
            return
        transport = getattr(self.websocket, "transport", None)
        if transport is not None:
            transport.abort()


async def open_websocket(
    uri: str,
    headers: Dict[str, str],
    config: WebSocketConfig,
    security: SecurityConfig,
) -> WebsocketsTransport:
    """
    Open a WebSocket connection and wrap it in a transport.

    Headers are attached to the handshake request verbatim. Compression is not
    negotiated and no subprotocol is offered.

    Raises:
        HandshakeError: If the URI is invalid, the server cannot be reached,
            TLS fails, the server rejects the upgrade or ``open_timeout`` expires
    """
    kwargs = {}
    if uri.startswith("wss://"):
        kwargs["ssl"] = build_ssl_context(security)

    try:
        websocket = await websockets.connect(
            uri,
            additional_headers=headers or None,
            compression=None,
            open_timeout=config.open_timeout,
            close_timeout=config.close_timeout,
            ping_interval=config.ping_interval,
            ping_timeout=config.ping_timeout,
            max_size=config.max_message_size,
            **kwargs,
        )
    except (InvalidHandshake, InvalidURI) as e:
        raise HandshakeError(f"WebSocket handshake with {uri} failed: {e}") from e
    except (asyncio.TimeoutError, TimeoutError) as e:
        raise HandshakeError(
            f"WebSocket handshake with {uri} timed out after {config.open_timeout}s"
        ) from e
    except OSError as e:
        raise HandshakeError(f"Could not connect to {uri}: {e}") from e

    logger.debug(f"WebSocket handshake with {uri} complete")
    return WebsocketsTransport(websocket)
