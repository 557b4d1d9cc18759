"""
Shared WebSocket utilities for proxy2asr.

This module contains small helpers used by the transport and the connection
for inspecting websockets connections and formatting frame-level log lines.
"""

import logging
from typing import Any, Optional

from proxy2asr.config.constants import FRAME_LOG_PREVIEW

logger = logging.getLogger(__name__)

# RFC 6455 section 7.4.1 plus the reserved codes websockets reports
CLOSE_CODE_NAMES = {
    1000: "normal closure",
    1001: "going away",
    1002: "protocol error",
    1003: "unsupported data",
    1005: "no status received",
    1006: "abnormal closure",
    1007: "invalid frame payload data",
    1008: "policy violation",
    1009: "message too big",
    1010: "mandatory extension",
    1011: "internal error",
    1012: "service restart",
    1013: "try again later",
    1014: "bad gateway",
    1015: "TLS handshake failure",
}


class WebSocketUtils:
    """Shared WebSocket utility functions."""

    @staticmethod
    def is_websocket_closed(websocket: Any) -> bool:
        """
        Check if a WebSocket connection is closed.

        Args:
            websocket: WebSocket connection to check

        Returns:
            bool: True if closed, False otherwise
        """
        if not websocket:
            return True

        try:
            if hasattr(websocket, "close_code"):
                return websocket.close_code is not None

            if hasattr(websocket, "closed"):
                return bool(websocket.closed)

            if hasattr(websocket, "state"):
                return websocket.state.name in ["CLOSED", "CLOSING"]

            return False
        except Exception:
            return True

    @staticmethod
    def describe_close(code: Optional[int], reason: str = "") -> str:
        """
        Format a close status for logging.

        Args:
            code (Optional[int]): Close status code, None if the peer sent none
            reason (str): Close reason sent by the peer

        Returns:
            str: e.g. ``1000 (normal closure)`` or ``1011 (internal error): boom``
        """
        if code is None:
            text = "no status code"
        else:
            text = f"{code} ({CLOSE_CODE_NAMES.get(code, 'unknown')})"
        if reason:
            text = f"{text}: {reason}"
        return text

    @staticmethod
    def format_frame_log(frame: Any, direction: str = "") -> str:
        """
        Format a frame for debug logging.

        Args:
            frame: proxy2asr.framing.Frame to describe
            direction (str): Optional prefix such as ``"->"`` or ``"<-"``

        Returns:
            str: Formatted log message
        """
        if frame.is_close:
            body = WebSocketUtils.describe_close(frame.close_code, frame.close_reason)
        else:
            preview = frame.payload[:FRAME_LOG_PREVIEW]
            body = repr(preview)
            if len(frame.payload) > FRAME_LOG_PREVIEW:
                body += "..."

        prefix = f"{direction} " if direction else ""
        return (
            f"{prefix}Frame[{frame.opcode.value}, fin={frame.fin}, "
            f"{len(frame.payload)} bytes]: {body}"
        )
