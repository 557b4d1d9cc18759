"""
Environment variable loader for proxy2asr configuration.

This module handles loading configuration from environment variables,
with type conversion, validation, and fallback to defaults.

Environment variables are read from the process environment after
load_env_file() has merged an optional .env file into it.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional, Type, TypeVar, cast

from dotenv import load_dotenv

from .constants import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CLOSE_TIMEOUT,
    DEFAULT_MAX_MESSAGE_SIZE,
    DEFAULT_OPEN_TIMEOUT,
)
from .models import (
    ApplicationConfig,
    LoggingConfig,
    LogLevel,
    SecurityConfig,
    WebSocketConfig,
)


# Track if environment variables have been loaded
_env_loaded = False


def load_env_file(env_file: Optional[str] = None) -> None:
    """Load environment variables from a .env file.

    Args:
        env_file: Path to the .env file. If None, uses default behavior.
    """
    global _env_loaded
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()
    _env_loaded = True


def is_env_loaded() -> bool:
    """Check whether load_env_file() has been called."""
    return _env_loaded


T = TypeVar("T")


def safe_convert(value: Optional[str], target_type: Type[T], default: T) -> T:
    """Safely convert environment variable string to target type."""
    if value is None:
        return default

    try:
        if target_type == bool:
            return cast(T, value.strip().lower() in ("true", "1", "yes"))
        elif target_type == int:
            return cast(T, int(value))
        elif target_type == float:
            return cast(T, float(value))
        elif target_type == str:
            return cast(T, value)
        elif target_type == Path:
            return cast(T, Path(value))
        elif callable(target_type):
            return cast(T, target_type(value))  # type: ignore
        else:
            return default
    except (ValueError, TypeError):
        return default


def safe_optional_float(value: Optional[str], default: Optional[float]) -> Optional[float]:
    """Convert to float; empty, "none" or "off" disables the setting."""
    if value is None:
        return default
    if value.strip().lower() in ("", "none", "off"):
        return None
    return safe_convert(value, float, default)  # type: ignore[arg-type]


def safe_string_or_none(value: Optional[str]) -> Optional[str]:
    """Convert environment variable to string or None if empty."""
    if value is None or value.strip() == "":
        return None
    return value.strip()


def load_websocket_config() -> WebSocketConfig:
    """Load WebSocket configuration from environment variables."""
    max_message_size = safe_string_or_none(os.getenv("WEBSOCKET_MAX_MESSAGE_SIZE"))

    return WebSocketConfig(
        chunk_size=safe_convert(os.getenv("WEBSOCKET_CHUNK_SIZE"), int, DEFAULT_CHUNK_SIZE),
        open_timeout=safe_optional_float(
            os.getenv("WEBSOCKET_OPEN_TIMEOUT"), DEFAULT_OPEN_TIMEOUT
        ),
        close_timeout=safe_optional_float(
            os.getenv("WEBSOCKET_CLOSE_TIMEOUT"), DEFAULT_CLOSE_TIMEOUT
        ),
        receive_timeout=safe_optional_float(os.getenv("WEBSOCKET_RECEIVE_TIMEOUT"), None),
        ping_interval=safe_optional_float(os.getenv("WEBSOCKET_PING_INTERVAL"), None),
        ping_timeout=safe_optional_float(os.getenv("WEBSOCKET_PING_TIMEOUT"), None),
        max_message_size=(
            safe_convert(max_message_size, int, DEFAULT_MAX_MESSAGE_SIZE)
            if max_message_size is not None
            else DEFAULT_MAX_MESSAGE_SIZE
        ),
    )


def load_security_config() -> SecurityConfig:
    """Load TLS configuration from environment variables."""
    ca_file = safe_string_or_none(os.getenv("TLS_CA_FILE"))

    return SecurityConfig(
        trust_all_certificates=safe_convert(
            os.getenv("TLS_TRUST_ALL_CERTIFICATES"), bool, False
        ),
        ca_file=Path(ca_file) if ca_file else None,
    )


def load_logging_config() -> LoggingConfig:
    """Load logging configuration from environment variables."""
    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = LogLevel.INFO
    try:
        log_level = LogLevel(log_level_str)
    except ValueError:
        pass

    return LoggingConfig(
        level=log_level,
        format=os.getenv(
            "LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        ),
        log_dir=Path(os.getenv("LOG_DIR", "logs")),
        log_filename=os.getenv("LOG_FILENAME", "proxy2asr.log"),
        max_log_size=safe_convert(os.getenv("LOG_MAX_SIZE"), int, 10 * 1024 * 1024),
        backup_count=safe_convert(os.getenv("LOG_BACKUP_COUNT"), int, 5),
        console_output=safe_convert(os.getenv("LOG_CONSOLE_OUTPUT"), bool, True),
        file_output=safe_convert(os.getenv("LOG_FILE_OUTPUT"), bool, True),
    )


def load_application_config() -> ApplicationConfig:
    """Load complete configuration from environment variables."""
    if not _env_loaded:
        load_env_file()

    config = ApplicationConfig(
        websocket=load_websocket_config(),
        security=load_security_config(),
        logging=load_logging_config(),
    )

    # Validate configuration and raise exceptions for critical errors
    validation_errors = config.validate()
    if validation_errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(
            f"  - {error}" for error in validation_errors
        )
        raise ValueError(error_msg)

    return config


def get_environment_info() -> Dict[str, Any]:
    """Get information about current environment variables for debugging."""
    return {
        "environment_variables_loaded": len(
            [k for k in os.environ.keys() if k.startswith(("WEBSOCKET_", "TLS_", "LOG_"))]
        ),
        "dotenv_loaded": _env_loaded,
        "dotenv_present": Path(".env").exists(),
        "trust_all_certificates": safe_convert(
            os.getenv("TLS_TRUST_ALL_CERTIFICATES"), bool, False
        ),
    }
