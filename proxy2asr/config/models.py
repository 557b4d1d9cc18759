"""
Configuration models for the proxy2asr package.

This module defines dataclasses for the different configuration domains,
providing type safety and validation for connection, TLS and logging settings.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from proxy2asr.config.constants import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CLOSE_TIMEOUT,
    DEFAULT_MAX_MESSAGE_SIZE,
    DEFAULT_OPEN_TIMEOUT,
)


class LogLevel(Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class WebSocketConfig:
    """WebSocket connection configuration."""

    chunk_size: int = DEFAULT_CHUNK_SIZE
    open_timeout: Optional[float] = DEFAULT_OPEN_TIMEOUT
    close_timeout: Optional[float] = DEFAULT_CLOSE_TIMEOUT
    # None disables the per-frame liveness guard
    receive_timeout: Optional[float] = None
    # Keepalive pings are off unless configured
    ping_interval: Optional[float] = None
    ping_timeout: Optional[float] = None
    max_message_size: Optional[int] = DEFAULT_MAX_MESSAGE_SIZE

    def validate(self) -> List[str]:
        """Validate connection settings and return list of errors."""
        errors = []

        if self.chunk_size <= 0:
            errors.append("WebSocket chunk size must be greater than 0")

        for name in ("open_timeout", "close_timeout", "receive_timeout", "ping_interval", "ping_timeout"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                errors.append(f"WebSocket {name} must be greater than 0 when set")

        if self.max_message_size is not None and self.max_message_size <= 0:
            errors.append("WebSocket max message size must be greater than 0 when set")

        return errors


@dataclass
class SecurityConfig:
    """TLS-related configuration."""

    # Disables certificate and hostname verification for wss:// endpoints
    trust_all_certificates: bool = False
    ca_file: Optional[Path] = None


@dataclass
class LoggingConfig:
    """Logging configuration settings."""

    level: LogLevel = LogLevel.INFO
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_dir: Path = field(default_factory=lambda: Path("logs"))
    log_filename: str = "proxy2asr.log"
    max_log_size: int = 10 * 1024 * 1024  # 10 MB
    backup_count: int = 5
    console_output: bool = True
    file_output: bool = True


@dataclass
class ApplicationConfig:
    """Master configuration containing all domain configs."""

    websocket: WebSocketConfig = field(default_factory=WebSocketConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> List[str]:
        """Validate configuration and return list of errors."""
        errors = self.websocket.validate()

        if self.security.ca_file is not None and not Path(self.security.ca_file).exists():
            errors.append(f"CA file not found: {self.security.ca_file}")

        if self.logging.backup_count < 0:
            errors.append("Log backup count must not be negative")

        return errors
