"""
Error channel for WebSocket connections.

A connection never raises an I/O failure into the code that started the
operation from a background task. Every failure is reported here instead,
tagged with the connection it belongs to and the phase it happened in, logged
at a level derived from its severity, and passed on to registered sinks. An
embedding application registers a sink to persist or forward connection
errors:

    async def persist(report: ErrorInfo):
        await store.write(report.connection_id, report.describe())

    register_error_handler(persist, ErrorContext.SEND)

Connections report through the module-level ``handle_error``:

    await handle_error(
        exc,
        context=ErrorContext.SEND,
        severity=ErrorSeverity.HIGH,
        operation="send_bytes",
        connection_id=self.connection_id,
        uri=self.uri,
    )
"""

import asyncio
import logging
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from proxy2asr.config.constants import RECENT_ERRORS_LIMIT


class ErrorContext(Enum):
    """Connection phase an error was raised in."""

    HANDSHAKE = "handshake"
    SEND = "send"
    RECEIVE = "receive"
    CLOSE = "close"
    CALLBACK = "callback"
    BACKGROUND = "background"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """How badly an error affected its connection."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


LOG_LEVELS = {
    ErrorSeverity.LOW: logging.DEBUG,
    ErrorSeverity.MEDIUM: logging.WARNING,
    ErrorSeverity.HIGH: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}

ErrorSink = Callable[["ErrorInfo"], Any]


@dataclass
class ErrorInfo:
    """One reported connection error."""

    error: BaseException
    context: ErrorContext
    severity: ErrorSeverity
    operation: str
    connection_id: Optional[str] = None
    uri: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def describe(self) -> str:
        """Single-line description used for logging."""
        prefix = f"[{self.connection_id}] " if self.connection_id else ""
        return (
            f"{prefix}{self.context.value} error in {self.operation}: "
            f"{type(self.error).__name__}: {self.error}"
        )


class ErrorHandler:
    """
    Collects connection errors and fans them out to sinks.

    Sinks are registered per ErrorContext or globally. Context sinks run
    before global sinks; a sink that raises is logged and skipped. Sinks may be
    plain callables or coroutine functions.
    """

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        history: int = RECENT_ERRORS_LIMIT,
    ):
        self.logger = logger or logging.getLogger(__name__)
        self._sinks: Dict[Optional[ErrorContext], List[ErrorSink]] = {None: []}
        self._sinks.update({context: [] for context in ErrorContext})
        self._by_context: Counter = Counter()
        self._by_connection: Counter = Counter()
        self._recent: Deque[ErrorInfo] = deque(maxlen=history)

    def register_handler(
        self, handler: ErrorSink, context: Optional[ErrorContext] = None
    ) -> None:
        """Add a sink for one context, or for every error when context is None."""
        self._sinks[context].append(handler)
        self.logger.debug(f"Registered error sink for {self._scope(context)}")

    def unregister_handler(
        self, handler: ErrorSink, context: Optional[ErrorContext] = None
    ) -> bool:
        """Remove a sink. Returns False if it was not registered."""
        sinks = self._sinks[context]
        if handler not in sinks:
            return False
        sinks.remove(handler)
        self.logger.debug(f"Unregistered error sink for {self._scope(context)}")
        return True

    @staticmethod
    def _scope(context: Optional[ErrorContext]) -> str:
        return context.value if context is not None else "all contexts"

    async def handle_error(
        self,
        error: BaseException,
        context: ErrorContext = ErrorContext.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        operation: str = "unknown",
        *,
        connection_id: Optional[str] = None,
        uri: Optional[str] = None,
        **metadata,
    ) -> ErrorInfo:
        """
        Record, log and dispatch one error.

        Args:
            error: The exception that occurred
            context: Connection phase the error belongs to
            severity: Severity; selects the log level
            operation: Name of the operation that failed
            connection_id: Id of the reporting connection, if any
            uri: Endpoint of the reporting connection, if any
            **metadata: Extra details passed through to sinks

        Returns:
            ErrorInfo: The report handed to the sinks
        """
        info = ErrorInfo(
            error=error,
            context=context,
            severity=severity,
            operation=operation,
            connection_id=connection_id,
            uri=uri,
            metadata=metadata,
        )

        self._by_context[context] += 1
        if connection_id is not None:
            self._by_connection[connection_id] += 1
        self._recent.append(info)

        self.logger.log(LOG_LEVELS[severity], info.describe())

        for sink in self._sinks[context] + self._sinks[None]:
            await self._notify(sink, info)
        return info

    async def _notify(self, sink: ErrorSink, info: ErrorInfo) -> None:
        try:
            if asyncio.iscoroutinefunction(sink):
                await sink(info)
            else:
                sink(info)
        except Exception as sink_error:
            self.logger.error(f"Error sink {sink!r} failed: {sink_error}")

    def recent_errors(self, connection_id: Optional[str] = None) -> List[ErrorInfo]:
        """Most recent reports, oldest first, optionally for one connection."""
        if connection_id is None:
            return list(self._recent)
        return [info for info in self._recent if info.connection_id == connection_id]

    def get_error_stats(self) -> Dict[str, Any]:
        return {
            "error_counts": {
                context.value: self._by_context[context] for context in ErrorContext
            },
            "errors_by_connection": dict(self._by_connection),
            "total_errors": sum(self._by_context.values()),
            "registered_handlers": {
                context.value: len(self._sinks[context]) for context in ErrorContext
            },
            "global_handlers": len(self._sinks[None]),
        }

    def reset_stats(self) -> None:
        """Clear counters and the recent-error history."""
        self._by_context.clear()
        self._by_connection.clear()
        self._recent.clear()


_global_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """Process-wide error channel, created on first use."""
    global _global_error_handler
    if _global_error_handler is None:
        _global_error_handler = ErrorHandler()
    return _global_error_handler


def register_error_handler(
    handler: ErrorSink, context: Optional[ErrorContext] = None
) -> None:
    get_error_handler().register_handler(handler, context)


def unregister_error_handler(
    handler: ErrorSink, context: Optional[ErrorContext] = None
) -> bool:
    return get_error_handler().unregister_handler(handler, context)


async def handle_error(
    error: BaseException,
    context: ErrorContext = ErrorContext.UNKNOWN,
    severity: ErrorSeverity = ErrorSeverity.MEDIUM,
    operation: str = "unknown",
    **details,
) -> ErrorInfo:
    """Report an error on the process-wide error channel."""
    return await get_error_handler().handle_error(
        error, context, severity, operation, **details
    )
