"""
proxy2asr: WebSocket client connections for speech-recognition backends.

Opens an outbound WebSocket to a recognition backend and exposes it through
an event-callback interface: on_connect, on_message and on_disconnect.
Outbound messages are split into bounded frames, inbound frames are
reassembled into text messages, and failures are reported on the error
channel instead of being raised into the caller.
"""

from proxy2asr.config import configure_logging, get_config, set_config
from proxy2asr.connection import (
    ConnectionHandler,
    ConnectionState,
    WebSocketConnection,
    create,
)
from proxy2asr.exceptions import (
    ConnectionNotOpenError,
    HandshakeError,
    ReceiveError,
    SendError,
    WebSocketConnectionError,
)
from proxy2asr.framing import Frame, Opcode
from proxy2asr.handlers import (
    ErrorContext,
    ErrorInfo,
    ErrorSeverity,
    register_error_handler,
    unregister_error_handler,
)

__version__ = "0.1.0"

__all__ = [
    "create",
    "WebSocketConnection",
    "ConnectionState",
    "ConnectionHandler",
    "Frame",
    "Opcode",
    "WebSocketConnectionError",
    "HandshakeError",
    "ConnectionNotOpenError",
    "SendError",
    "ReceiveError",
    "ErrorContext",
    "ErrorInfo",
    "ErrorSeverity",
    "register_error_handler",
    "unregister_error_handler",
    "configure_logging",
    "get_config",
    "set_config",
]
