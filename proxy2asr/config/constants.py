"""
Constants and configuration values used throughout the package.

This module defines constants that are used across different parts of the package,
providing a centralized location for default values and making it easier to
keep the sender, receiver and configuration layers consistent.
"""

# Logger name used throughout the package
LOGGER_NAME = "proxy2asr"

# Frame chunk size shared by the send and receive paths (bytes)
DEFAULT_CHUNK_SIZE = 4096

# WebSocket close codes (RFC 6455, section 7.4.1)
NORMAL_CLOSURE = 1000
GOING_AWAY = 1001

# Handshake / close handshake defaults (seconds)
DEFAULT_OPEN_TIMEOUT = 10.0
DEFAULT_CLOSE_TIMEOUT = 10.0

# Largest inbound message accepted by the transport
DEFAULT_MAX_MESSAGE_SIZE = 16 * 1024 * 1024  # 16MB

# Frame payloads longer than this are truncated in debug logs
FRAME_LOG_PREVIEW = 64

# Error reports kept by the error channel for inspection
RECENT_ERRORS_LIMIT = 100
