"""
Connection Handlers Module

This module contains the components that sit between a WebSocket connection
and the consumer code driving it.

Components:
- ErrorHandler: Central error channel for connection failures
- handle_error / register_error_handler: Global error channel access
"""

from .error_handler import (
    ErrorContext,
    ErrorHandler,
    ErrorInfo,
    ErrorSeverity,
    get_error_handler,
    handle_error,
    register_error_handler,
    unregister_error_handler,
)

__all__ = [
    "ErrorContext",
    "ErrorHandler",
    "ErrorInfo",
    "ErrorSeverity",
    "get_error_handler",
    "handle_error",
    "register_error_handler",
    "unregister_error_handler",
]
