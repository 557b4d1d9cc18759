"""
Configuration module for proxy2asr.

This module provides centralized configuration management for the package,
including constants, logging setup, and environment-based configuration.

### Usage Examples:

```python
from proxy2asr.config import get_config, websocket_config
config = get_config()
print(f"Chunk size: {config.websocket.chunk_size}")

# Set up logging for an embedding application
from proxy2asr.config.logging_config import configure_logging
logger = configure_logging()
logger.info("Application started")
```

Environment variables (optionally from a ``.env`` file):
``WEBSOCKET_CHUNK_SIZE``, ``WEBSOCKET_OPEN_TIMEOUT``, ``WEBSOCKET_CLOSE_TIMEOUT``,
``WEBSOCKET_RECEIVE_TIMEOUT``, ``WEBSOCKET_PING_INTERVAL``, ``WEBSOCKET_PING_TIMEOUT``,
``WEBSOCKET_MAX_MESSAGE_SIZE``, ``TLS_TRUST_ALL_CERTIFICATES``, ``TLS_CA_FILE``,
``LOG_LEVEL``, ``LOG_DIR``, ``LOG_FILENAME`` and friends.
"""

from .settings import (
    get_config,
    reload_config,
    set_config,
    websocket_config,
    security_config,
    logging_config,
    validate_configuration,
    print_configuration_summary,
)

from .models import (
    ApplicationConfig,
    WebSocketConfig,
    SecurityConfig,
    LoggingConfig,
    LogLevel,
)

from .constants import *
from .env_loader import load_env_file
from .logging_config import configure_logging

__all__ = [
    # Core configuration
    "get_config",
    "reload_config",
    "set_config",
    "load_env_file",

    # Domain configs
    "websocket_config",
    "security_config",
    "logging_config",

    # Utilities
    "validate_configuration",
    "print_configuration_summary",
    "configure_logging",

    # Models
    "ApplicationConfig",
    "WebSocketConfig",
    "SecurityConfig",
    "LoggingConfig",
    "LogLevel",

    # Constants
    "LOGGER_NAME",
    "DEFAULT_CHUNK_SIZE",
    "NORMAL_CLOSURE",
    "GOING_AWAY",
    "DEFAULT_OPEN_TIMEOUT",
    "DEFAULT_CLOSE_TIMEOUT",
    "DEFAULT_MAX_MESSAGE_SIZE",
    "FRAME_LOG_PREVIEW",
]
