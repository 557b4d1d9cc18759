"""Exceptions raised by proxy2asr connections."""


class WebSocketConnectionError(Exception):
    """Base class for connection failures reported by proxy2asr."""


class HandshakeError(WebSocketConnectionError):
    """The opening handshake failed or was aborted."""


class ConnectionNotOpenError(WebSocketConnectionError):
    """An operation required an open connection."""

    def __init__(self, state: str):
        super().__init__(f"Connection is not open (state={state})")
        self.state = state


class SendError(WebSocketConnectionError):
    """Transmitting a message failed part way or was cancelled."""


class ReceiveError(WebSocketConnectionError):
    """The transport failed while reading a frame."""
