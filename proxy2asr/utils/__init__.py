"""
Shared utility modules for proxy2asr.
"""

from .websocket_utils import WebSocketUtils

__all__ = ["WebSocketUtils"]
