import asyncio
import logging
from typing import Dict, List, Optional, Tuple

import pytest

import proxy2asr.handlers.error_handler as error_handler_module
from proxy2asr.config import set_config
from proxy2asr.config.models import (
    ApplicationConfig,
    LoggingConfig,
    SecurityConfig,
    WebSocketConfig,
)
from proxy2asr.framing import Frame
from proxy2asr.handlers.error_handler import ErrorInfo, register_error_handler

"""
Pytest configuration file for the proxy2asr test suite.

This file contains fixtures that are shared across multiple test files,
including an in-memory transport that records every frame it is given.
"""


class FakeTransport:
    """In-memory transport recording outbound frames and replaying inbound ones."""

    def __init__(self):
        self.sent: List[List[Frame]] = []
        self.close_calls: List[Tuple[int, str]] = []
        self.release_count = 0
        self.send_error: Optional[BaseException] = None
        self.close_error: Optional[BaseException] = None
        self.send_gate: Optional[asyncio.Event] = None
        self.close_gate: Optional[asyncio.Event] = None
        self._inbound: asyncio.Queue = asyncio.Queue()

    @property
    def released(self) -> bool:
        return self.release_count > 0

    @property
    def sent_frames(self) -> List[Frame]:
        return [frame for message in self.sent for frame in message]

    def feed(self, *frames: Frame) -> None:
        """Queue inbound frames."""
        for frame in frames:
            self._inbound.put_nowait(frame)

    def peer_close(self, code: Optional[int] = 1000, reason: str = "") -> None:
        self._inbound.put_nowait(Frame.close(code, reason))

    def fail(self, error: BaseException) -> None:
        """Make the next read raise ``error``."""
        self._inbound.put_nowait(error)

    def end(self) -> None:
        """End the inbound stream without a close frame."""
        self._inbound.put_nowait(None)

    async def send_frames(self, frames) -> None:
        if self.send_gate is not None:
            await self.send_gate.wait()
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(list(frames))

    async def frames(self):
        while True:
            item = await self._inbound.get()
            if item is None:
                return
            if isinstance(item, BaseException):
                raise item
            yield item

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_calls.append((code, reason))
        if self.close_gate is not None:
            await self.close_gate.wait()
        if self.close_error is not None:
            raise self.close_error

    def release(self) -> None:
        self.release_count += 1


class FakeConnector:
    """Connector returning a FakeTransport; can fail or block the handshake."""

    def __init__(self):
        self.transport = FakeTransport()
        self.calls: List[Tuple[str, Dict[str, str], WebSocketConfig, SecurityConfig]] = []
        self.error: Optional[BaseException] = None
        self.gate: Optional[asyncio.Event] = None

    async def __call__(self, uri, headers, config, security):
        self.calls.append((uri, dict(headers), config, security))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.transport


async def wait_for_condition(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("Condition not met within timeout")
        await asyncio.sleep(0.01)


@pytest.fixture(autouse=True)
def reset_logging():
    """Reset logging configuration before each test"""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    logging.basicConfig(level=logging.NOTSET)
    yield


@pytest.fixture(autouse=True)
def app_config():
    """Install a default configuration that never touches the environment."""
    config = ApplicationConfig(logging=LoggingConfig(file_output=False))
    set_config(config)
    yield config
    set_config(None)


@pytest.fixture(autouse=True)
def fresh_error_handler(monkeypatch):
    """Give every test its own global error handler."""
    monkeypatch.setattr(error_handler_module, "_global_error_handler", None)
    yield


@pytest.fixture
def reported_errors() -> List[ErrorInfo]:
    """Collect everything reported on the error channel."""
    errors: List[ErrorInfo] = []
    register_error_handler(errors.append)
    return errors


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def transport(connector) -> FakeTransport:
    return connector.transport


@pytest.fixture
def wait_until():
    """Async helper polling a predicate; see wait_for_condition."""
    return wait_for_condition
