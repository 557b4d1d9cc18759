"""
WebSocket client connection with an event-callback interface.

A WebSocketConnection owns one outbound WebSocket for its whole life:

- connect() schedules the opening handshake and returns immediately
- a background listen task reassembles inbound frames into text messages
- send_text() / send_bytes() split payloads into bounded frames
- disconnect(), a peer close, a transport fault or cancel() end it

Consumers learn about the lifecycle only through the on_connect, on_message
and on_disconnect callbacks, which run on their own tasks or threads, and
through the error channel in proxy2asr.handlers.error_handler. on_disconnect
fires exactly once per connection whichever way it ends. A connection is never
reopened; create a new one to reconnect.

Usage:
    connection = create("wss://asr.example.com/stream", {"Authorization": token})
    connection.on_message(handle_transcript).on_disconnect(handle_drop).connect()
    if await connection.wait_until_open():
        await connection.send_bytes(audio_chunk)
    await connection.disconnect()
"""

import asyncio
import concurrent.futures
import logging
import time
import uuid
from enum import Enum
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Coroutine,
    Dict,
    Optional,
    Set,
    Union,
)
from urllib.parse import urlparse

from proxy2asr.config.constants import NORMAL_CLOSURE
from proxy2asr.config.models import SecurityConfig, WebSocketConfig
from proxy2asr.config.settings import get_config
from proxy2asr.dispatcher import EventDispatcher
from proxy2asr.exceptions import (
    ConnectionNotOpenError,
    HandshakeError,
    ReceiveError,
    SendError,
    WebSocketConnectionError,
)
from proxy2asr.framing import Frame, MessageAssembler, Opcode, fragment
from proxy2asr.handlers.error_handler import ErrorContext, ErrorSeverity, handle_error
from proxy2asr.transport import Connector, Transport, open_websocket
from proxy2asr.utils.websocket_utils import WebSocketUtils

logger = logging.getLogger(__name__)

ConnectCallback = Callable[["WebSocketConnection"], Any]
MessageCallback = Callable[[str, "WebSocketConnection"], Any]
DisconnectCallback = Callable[["WebSocketConnection"], Any]
SendHandle = Union["asyncio.Future[Any]", "concurrent.futures.Future[Any]"]


class ConnectionState(Enum):
    """Externally visible connection states."""

    UNOPENED = "Unopened"
    CONNECTING = "Connecting"
    OPEN = "Open"
    CLOSING = "Closing"
    CLOSED = "Closed"


class ConnectionHandler:
    """
    Strategy interface for connection events.

    Subclass and override the events you care about, then pass an instance to
    create(handler=...) or WebSocketConnection.set_handler(). Methods may be
    plain functions (run in a worker thread) or coroutines.
    """

    def on_connect(self, connection: "WebSocketConnection") -> Any:
        pass

    def on_message(self, message: str, connection: "WebSocketConnection") -> Any:
        pass

    def on_disconnect(self, connection: "WebSocketConnection") -> Any:
        pass


class WebSocketConnection:
    """
    Outbound WebSocket connection driven by callbacks.

    Attributes:
        uri (str): Target ws:// or wss:// URI
        headers (Dict[str, str]): Extra handshake request headers, sent verbatim
        config (WebSocketConfig): Chunking, timeout and keepalive settings
        security (SecurityConfig): TLS settings for wss:// endpoints
        connection_id (str): Short identifier used in logs and task names
    """

    def __init__(
        self,
        uri: str,
        headers: Optional[Dict[str, str]] = None,
        config: Optional[WebSocketConfig] = None,
        security: Optional[SecurityConfig] = None,
        handler: Optional[ConnectionHandler] = None,
        connector: Optional[Connector] = None,
    ):
        parsed = urlparse(uri)
        if parsed.scheme not in ("ws", "wss") or not parsed.netloc:
            raise ValueError(f"Invalid WebSocket URI: {uri!r}")

        if config is None or security is None:
            app_config = get_config()
            config = config or app_config.websocket
            security = security or app_config.security

        self.uri = uri
        self.headers: Dict[str, str] = dict(headers or {})
        self.config = config
        self.security = security
        self.connection_id = f"ws_{uuid.uuid4().hex[:8]}"

        self._connector: Connector = connector or open_websocket
        self._dispatcher = EventDispatcher(self.connection_id)
        self._transport: Optional[Transport] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self._state = ConnectionState.UNOPENED
        self._faulted = False
        self._cancelled = False
        self._disconnect_fired = False
        self._closed = asyncio.Event()

        self._connect_task: Optional[asyncio.Task] = None
        self._listen_task: Optional[asyncio.Task] = None
        self._io_tasks: Set[asyncio.Task] = set()
        self._reports: Set[asyncio.Task] = set()

        self._on_connect: Optional[ConnectCallback] = None
        self._on_message: Optional[MessageCallback] = None
        self._on_disconnect: Optional[DisconnectCallback] = None
        if handler is not None:
            self.set_handler(handler)

        self.created_at = time.time()
        self.connected_at: Optional[float] = None
        self.closed_at: Optional[float] = None
        self._stats: Dict[str, int] = {
            "frames_sent": 0,
            "frames_received": 0,
            "messages_sent": 0,
            "messages_received": 0,
            "bytes_sent": 0,
            "bytes_received": 0,
        }

    def __repr__(self) -> str:
        return (
            f"<WebSocketConnection {self.connection_id} {self.uri} "
            f"state={self._state.value}{' faulted' if self._faulted else ''}>"
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        """Current state; a faulted connection reports CLOSED."""
        return self._state

    def get_state(self) -> ConnectionState:
        return self._state

    @property
    def faulted(self) -> bool:
        """True if the connection ended through a failure or cancellation."""
        return self._faulted

    @property
    def is_open(self) -> bool:
        return self._state is ConnectionState.OPEN

    # ------------------------------------------------------------------
    # Callback registration
    # ------------------------------------------------------------------

    def on_connect(self, callback: Optional[ConnectCallback]) -> "WebSocketConnection":
        """Set the callback invoked once the handshake succeeds."""
        self._on_connect = callback
        return self

    def on_message(self, callback: Optional[MessageCallback]) -> "WebSocketConnection":
        """Set the callback invoked with ``(message, connection)`` per message."""
        self._on_message = callback
        return self

    def on_disconnect(
        self, callback: Optional[DisconnectCallback]
    ) -> "WebSocketConnection":
        """Set the callback invoked once when the connection ends."""
        self._on_disconnect = callback
        return self

    def set_handler(self, handler: ConnectionHandler) -> "WebSocketConnection":
        """Register every event a handler object overrides."""
        for event in ("on_connect", "on_message", "on_disconnect"):
            method = getattr(handler, event, None)
            if method is None:
                continue
            # Skip the no-op defaults so they don't occupy a worker thread
            if getattr(type(handler), event, None) is getattr(ConnectionHandler, event):
                continue
            setattr(self, f"_{event}", method)
        return self

    # ------------------------------------------------------------------
    # Connection controller
    # ------------------------------------------------------------------

    def connect(self) -> "WebSocketConnection":
        """
        Start the opening handshake and return immediately.

        Must be called from a running event loop. Only an unopened connection
        can connect; later calls are logged and ignored. Use wait_until_open()
        to find out how the handshake went.
        """
        if self._state is not ConnectionState.UNOPENED:
            logger.warning(
                f"[{self.connection_id}] connect() ignored in state {self._state.value}; "
                f"create a new connection to reconnect"
            )
            return self

        self._loop = asyncio.get_running_loop()
        self._state = ConnectionState.CONNECTING
        logger.info(f"[{self.connection_id}] Connecting to {self.uri}")
        self._connect_task = self._spawn(self._connect(), "connect")
        return self

    async def _connect(self) -> None:
        try:
            if self._cancelled:
                raise asyncio.CancelledError()
            transport = await self._connector(
                self.uri, self.headers, self.config, self.security
            )
        except asyncio.CancelledError:
            if self._state is ConnectionState.CONNECTING:
                self._fault("handshake cancelled")
                await handle_error(
                    HandshakeError("Handshake cancelled"),
                    context=ErrorContext.HANDSHAKE,
                    severity=ErrorSeverity.MEDIUM,
                    operation="connect",
                    uri=self.uri,
                    connection_id=self.connection_id,
                )
            return
        except Exception as e:
            if self._state is ConnectionState.CONNECTING:
                self._fault(f"handshake failed: {e}")
                await handle_error(
                    e,
                    context=ErrorContext.HANDSHAKE,
                    severity=ErrorSeverity.HIGH,
                    operation="connect",
                    uri=self.uri,
                    connection_id=self.connection_id,
                )
            return

        if self._state is not ConnectionState.CONNECTING:
            # disconnect() won the race against the handshake
            transport.release()
            return

        self._transport = transport
        self._state = ConnectionState.OPEN
        self.connected_at = time.time()
        logger.info(f"[{self.connection_id}] Connected to {self.uri}")

        self._dispatcher.dispatch("connect", self._on_connect, self)
        self._listen_task = self._spawn(self._listen(transport), "listen")

    async def disconnect(self) -> None:
        """
        Close the connection.

        on_disconnect is dispatched first, then the close handshake runs with
        a normal closure code and an empty reason. Returns once the handshake
        finished or the socket was released. A connection that is still
        connecting has its handshake aborted instead; on_connect never fires.
        Calling it again while the close is in progress waits for that close.
        """
        state = self._state
        if state is ConnectionState.CLOSING:
            logger.debug(f"[{self.connection_id}] disconnect() waiting for close in progress")
            await self._closed.wait()
            return
        if state is ConnectionState.CLOSED:
            logger.debug(f"[{self.connection_id}] disconnect() ignored in state {state.value}")
            return

        logger.info(f"[{self.connection_id}] Disconnecting from {self.uri}")
        self._fire_disconnect()

        if state is ConnectionState.UNOPENED:
            self._set_closed()
            return

        if state is ConnectionState.CONNECTING:
            self._set_closed()
            await self._cancel_task(self._connect_task)
            self._release()
            return

        self._state = ConnectionState.CLOSING
        transport = self._transport
        try:
            if transport is not None:
                await transport.close(NORMAL_CLOSURE, "")
        except Exception as e:
            await handle_error(
                e,
                context=ErrorContext.CLOSE,
                severity=ErrorSeverity.MEDIUM,
                operation="disconnect",
                uri=self.uri,
                connection_id=self.connection_id,
            )
        finally:
            self._release()
            self._set_closed()

        await self._cancel_task(self._listen_task)
        logger.info(f"[{self.connection_id}] Disconnected")

    def cancel(self) -> None:
        """
        Trigger the connection's cancellation signal.

        In-flight handshake, receive and send operations are interrupted and
        the connection ends as faulted (socket released, on_disconnect once).
        Cancelling before connect() makes the handshake fail immediately.
        Safe to call from any thread.
        """
        if self._cancelled:
            return
        self._cancelled = True
        logger.info(f"[{self.connection_id}] Cancellation requested")

        loop = self._loop
        if loop is None or loop.is_closed():
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            self._cancel_io()
        else:
            loop.call_soon_threadsafe(self._cancel_io)

    def _cancel_io(self) -> None:
        for task in list(self._io_tasks):
            task.cancel()

    async def wait_until_open(self) -> bool:
        """Wait for the handshake to finish; True if the connection is open."""
        if self._connect_task is not None:
            await asyncio.wait({self._connect_task})
        return self._state is ConnectionState.OPEN

    async def wait_closed(self) -> None:
        """Wait until the connection has ended and its callbacks have run."""
        await self._closed.wait()
        listen_task = self._listen_task
        if listen_task is not None and listen_task is not asyncio.current_task():
            await asyncio.wait({listen_task})
        await self._dispatcher.drain()

    # ------------------------------------------------------------------
    # Receiver
    # ------------------------------------------------------------------

    async def _listen(self, transport: Transport) -> None:
        assembler = MessageAssembler()
        frames = transport.frames()
        logger.debug(f"[{self.connection_id}] Receive loop started")

        try:
            while self._state is ConnectionState.OPEN:
                frame = await self._read_frame(frames)
                self._stats["frames_received"] += 1
                self._stats["bytes_received"] += len(frame.payload)
                logger.debug(
                    f"[{self.connection_id}] {WebSocketUtils.format_frame_log(frame, '<-')}"
                )

                if frame.is_close:
                    await self._handle_peer_close(transport, frame)
                    return

                message = assembler.feed(frame)
                if message is not None:
                    self._stats["messages_received"] += 1
                    self._dispatcher.dispatch("message", self._on_message, message, self)

        except asyncio.CancelledError:
            if self._state is ConnectionState.OPEN:
                self._fault("receive cancelled")
                await handle_error(
                    ReceiveError("Receive cancelled"),
                    context=ErrorContext.RECEIVE,
                    severity=ErrorSeverity.MEDIUM,
                    operation="listen",
                    uri=self.uri,
                    connection_id=self.connection_id,
                )
        except Exception as e:
            if self._state is ConnectionState.OPEN:
                self._fault(f"receive failed: {e}")
                dropped = isinstance(e, (ReceiveError, ConnectionError))
                await handle_error(
                    e,
                    context=ErrorContext.RECEIVE,
                    severity=ErrorSeverity.MEDIUM if dropped else ErrorSeverity.HIGH,
                    operation="listen",
                    uri=self.uri,
                    connection_id=self.connection_id,
                    discarded_frames=assembler.frames,
                )
            else:
                logger.debug(
                    f"[{self.connection_id}] Receive loop stopped after close: {e}"
                )
        finally:
            if assembler.in_progress:
                logger.debug(
                    f"[{self.connection_id}] Discarding partial message "
                    f"({assembler.frames} frames, {assembler.size} bytes)"
                )
                assembler.reset()
            # disconnect() releases the socket itself once its handshake is done
            if self._state is not ConnectionState.CLOSING:
                self._release()
            logger.debug(f"[{self.connection_id}] Receive loop exited")

    async def _read_frame(self, frames: AsyncIterator[Frame]) -> Frame:
        timeout = self.config.receive_timeout
        try:
            if timeout is None:
                return await anext(frames)
            return await asyncio.wait_for(anext(frames), timeout)
        except StopAsyncIteration as e:
            raise ReceiveError("Connection ended without a close frame") from e
        except asyncio.TimeoutError as e:
            raise ReceiveError(f"No frame received within {timeout}s") from e

    async def _handle_peer_close(self, transport: Transport, frame: Frame) -> None:
        if self._state is not ConnectionState.OPEN:
            # Our own close handshake is in progress or done
            return

        logger.info(
            f"[{self.connection_id}] Peer closed the connection: "
            f"{WebSocketUtils.describe_close(frame.close_code, frame.close_reason)}"
        )
        self._state = ConnectionState.CLOSING
        try:
            await transport.close(NORMAL_CLOSURE, "")
        except Exception as e:
            await handle_error(
                e,
                context=ErrorContext.CLOSE,
                severity=ErrorSeverity.LOW,
                operation="peer_close",
                uri=self.uri,
                connection_id=self.connection_id,
            )
        finally:
            self._release()
            self._set_closed()
            self._fire_disconnect()

    # ------------------------------------------------------------------
    # Sender
    # ------------------------------------------------------------------

    def send_text(self, message: str) -> SendHandle:
        """
        Send a text message.

        The message is UTF-8 encoded and split into frames of
        ``config.chunk_size`` bytes. Returns a handle that resolves to None on
        success and raises ConnectionNotOpenError or SendError on failure.
        Failures are also reported on the error channel, so the handle may be
        ignored.
        """
        return self._submit(lambda: self._send_text(message), "send_text", raise_error=True)

    def send_bytes(self, buffer: bytes) -> SendHandle:
        """
        Send a binary message.

        Returns a handle that resolves to True on success and False on any
        failure; it never raises. Failures are reported on the error channel.
        """
        data = bytes(buffer)
        return self._submit(lambda: self._send_bytes(data), "send_bytes", raise_error=False)

    async def _send_text(self, message: str) -> None:
        if self._state is not ConnectionState.OPEN:
            error = ConnectionNotOpenError(self._state.value)
            await handle_error(
                error,
                context=ErrorContext.SEND,
                severity=ErrorSeverity.HIGH,
                operation="send_text",
                uri=self.uri,
                connection_id=self.connection_id,
            )
            raise error

        await self._transmit(message.encode("utf-8"), Opcode.TEXT, "send_text")

    async def _send_bytes(self, data: bytes) -> bool:
        if self._state is not ConnectionState.OPEN:
            await handle_error(
                ConnectionNotOpenError(self._state.value),
                context=ErrorContext.SEND,
                severity=ErrorSeverity.MEDIUM,
                operation="send_bytes",
                uri=self.uri,
                connection_id=self.connection_id,
            )
            return False

        try:
            await self._transmit(data, Opcode.BINARY, "send_bytes")
        except WebSocketConnectionError:
            return False
        return True

    async def _transmit(self, data: bytes, opcode: Opcode, operation: str) -> None:
        transport = self._transport
        if transport is None:
            raise ConnectionNotOpenError(self._state.value)

        frames = list(fragment(data, opcode, self.config.chunk_size))
        try:
            if frames:
                await transport.send_frames(frames)
        except asyncio.CancelledError as e:
            error = SendError(f"{operation} cancelled")
            severity = ErrorSeverity.MEDIUM
            if self._state is ConnectionState.OPEN:
                self._fault(f"{operation} cancelled")
            elif not self._faulted:
                # Cut off by a normal close
                severity = ErrorSeverity.LOW
            await handle_error(
                error,
                context=ErrorContext.SEND,
                severity=severity,
                operation=operation,
                uri=self.uri,
                connection_id=self.connection_id,
            )
            raise error from e
        except Exception as e:
            severity = ErrorSeverity.HIGH
            if self._state is ConnectionState.OPEN:
                self._fault(f"{operation} failed: {e}")
            elif not self._faulted:
                # Cut off by a normal close
                severity = ErrorSeverity.LOW
            await handle_error(
                e,
                context=ErrorContext.SEND,
                severity=severity,
                operation=operation,
                uri=self.uri,
                connection_id=self.connection_id,
                frames=len(frames),
                size=len(data),
            )
            raise SendError(f"{operation} failed: {e}") from e

        self._stats["frames_sent"] += len(frames)
        self._stats["messages_sent"] += 1
        self._stats["bytes_sent"] += len(data)
        logger.debug(
            f"[{self.connection_id}] Sent {opcode.value} message: "
            f"{len(data)} bytes in {len(frames)} frames"
        )

    def _submit(
        self,
        factory: Callable[[], Coroutine[Any, Any, Any]],
        operation: str,
        raise_error: bool,
    ) -> SendHandle:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is not None and (self._loop is None or running is self._loop):
            return self._spawn(factory(), operation)

        if self._loop is not None and self._loop.is_running():
            # Called from another thread, e.g. a plain callback in a worker
            return asyncio.run_coroutine_threadsafe(
                self._spawn_and_wait(factory, operation), self._loop
            )

        # No event loop can carry this send, so the connection cannot be open
        error = ConnectionNotOpenError(self._state.value)
        logger.error(f"[{self.connection_id}] {operation} rejected: {error}")
        future: concurrent.futures.Future = concurrent.futures.Future()
        if raise_error:
            future.set_exception(error)
        else:
            future.set_result(False)
        return future

    async def _spawn_and_wait(
        self, factory: Callable[[], Coroutine[Any, Any, Any]], operation: str
    ) -> Any:
        return await self._spawn(factory(), operation)

    # ------------------------------------------------------------------
    # Termination bookkeeping
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(
            coro, name=f"{self.connection_id}:{name}"
        )
        self._io_tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._io_tasks.discard(task)
        if task.cancelled():
            return

        error = task.exception()
        if error is None or isinstance(error, WebSocketConnectionError):
            return

        # Last line of defence: nothing should escape the I/O tasks
        logger.critical(
            f"[{self.connection_id}] Unhandled exception in {task.get_name()}: {error!r}"
        )
        self._fault(f"unhandled exception in {task.get_name()}")
        report = asyncio.get_running_loop().create_task(
            handle_error(
                error,
                context=ErrorContext.BACKGROUND,
                severity=ErrorSeverity.CRITICAL,
                operation=task.get_name(),
                uri=self.uri,
                connection_id=self.connection_id,
            )
        )
        self._reports.add(report)
        report.add_done_callback(self._reports.discard)

    async def _cancel_task(self, task: Optional[asyncio.Task]) -> None:
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        await asyncio.wait({task})

    def _fault(self, reason: str) -> None:
        """Force the connection into the released, closed state."""
        self._release()
        if self._state is ConnectionState.CLOSED:
            return

        if self._state is not ConnectionState.CLOSING:
            self._faulted = True
        logger.warning(f"[{self.connection_id}] Connection terminated: {reason}")
        self._set_closed()
        self._fire_disconnect()

        listen_task = self._listen_task
        if (
            listen_task is not None
            and not listen_task.done()
            and listen_task is not asyncio.current_task()
        ):
            listen_task.cancel()

    def _release(self) -> None:
        transport, self._transport = self._transport, None
        if transport is None:
            return
        try:
            transport.release()
        except Exception as e:
            logger.warning(f"[{self.connection_id}] Error releasing transport: {e}")

    def _set_closed(self) -> None:
        self._state = ConnectionState.CLOSED
        if self.closed_at is None:
            self.closed_at = time.time()
        self._closed.set()

    def _fire_disconnect(self) -> None:
        if self._disconnect_fired:
            return
        self._disconnect_fired = True
        self._dispatcher.dispatch("disconnect", self._on_disconnect, self)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        """Get connection statistics."""
        end = self.closed_at or time.time()
        return {
            "connection_id": self.connection_id,
            "uri": self.uri,
            "state": self._state.value,
            "faulted": self._faulted,
            "cancelled": self._cancelled,
            "uptime_seconds": (end - self.connected_at) if self.connected_at else 0.0,
            "callbacks_dispatched": self._dispatcher.dispatched,
            **self._stats,
        }


def create(
    uri: str,
    headers: Optional[Dict[str, str]] = None,
    *,
    config: Optional[WebSocketConfig] = None,
    security: Optional[SecurityConfig] = None,
    handler: Optional[ConnectionHandler] = None,
    connector: Optional[Connector] = None,
) -> WebSocketConnection:
    """Create a new, unopened connection.

    Args:
        uri: Target ws:// or wss:// URI
        headers: Extra handshake request headers
        config: Connection settings; defaults to the global configuration
        security: TLS settings; defaults to the global configuration
        handler: Optional ConnectionHandler receiving all events
        connector: Coroutine opening the transport; defaults to open_websocket

    Returns:
        WebSocketConnection: Call connect() on it to open the socket
    """
    return WebSocketConnection(
        uri,
        headers,
        config=config,
        security=security,
        handler=handler,
        connector=connector,
    )
